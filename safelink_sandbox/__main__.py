from __future__ import annotations

import uvicorn

from .config import get_settings


def main() -> None:
    uvicorn.run("safelink_sandbox.main:app", host="0.0.0.0", port=get_settings().port)


if __name__ == "__main__":
    main()
