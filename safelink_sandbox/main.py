from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import __version__
from .analyzer import analyze_url, batch_check, quick_check
from .config import get_settings
from .urls import InvalidURLError

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("safelink_sandbox.api")

settings = get_settings()

app = FastAPI(title="Safe-Link Sandbox", version=__version__)

limiter = Limiter(key_func=get_remote_address)
app.state.limiter = limiter

_STARTED = time.monotonic()
_playwright_semaphore = asyncio.Semaphore(settings.playwright_concurrency)

_SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "no-referrer",
    "Content-Security-Policy": "default-src 'self'; img-src 'self' data:",
}


class ApiError(Exception):
    def __init__(self, status_code: int, code: str, message: str, headers: dict[str, str] | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message
        self.headers = headers


def _ok(data: Any) -> dict[str, Any]:
    return {"success": True, "data": data}


def _error(status_code: int, code: str, message: str, headers: dict[str, str] | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": {"code": code, "message": message}},
        headers=headers,
    )


@asynccontextmanager
async def _playwright_slot():
    try:
        await asyncio.wait_for(_playwright_semaphore.acquire(), timeout=settings.playwright_acquire_timeout_s)
    except asyncio.TimeoutError:
        raise ApiError(
            503,
            "AGENT_BUSY",
            "Too many concurrent browser jobs. Please retry.",
            headers={"Retry-After": "2"},
        )
    try:
        yield
    finally:
        _playwright_semaphore.release()


def _require_url(body: dict[str, Any]) -> str:
    url = body.get("url")
    if not url:
        raise ApiError(400, "MISSING_URL", "A URL is required.")
    if not isinstance(url, str):
        raise ApiError(400, "INVALID_URL_TYPE", "The URL must be a string.")
    return url


def _api_rate_limit() -> str:
    return settings.rate_limit


# One budget per client address across every /api route.
_api_limit = limiter.shared_limit(_api_rate_limit, scope="api")


async def _json_body(request: Request) -> dict[str, Any]:
    try:
        body = await request.json()
    except ValueError:
        raise ApiError(400, "INVALID_REQUEST", "Request body must be JSON.")
    if not isinstance(body, dict):
        raise ApiError(400, "INVALID_REQUEST", "Request body must be a JSON object.")
    return body


app.add_middleware(
    CORSMiddleware,
    allow_origins=list(settings.cors_origins),
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "Authorization"],
)


@app.middleware("http")
async def log_and_harden(request: Request, call_next):
    logger.info("%s %s", request.method, request.url.path)
    response = await call_next(request)
    for name, value in _SECURITY_HEADERS.items():
        response.headers.setdefault(name, value)
    return response


@app.exception_handler(ApiError)
async def _api_error_handler(request: Request, exc: ApiError):
    return _error(exc.status_code, exc.code, exc.message, exc.headers)


@app.exception_handler(RateLimitExceeded)
async def _rate_limit_handler(request: Request, exc: RateLimitExceeded):
    return _error(429, "RATE_LIMIT_EXCEEDED", f"{exc.detail}. Please retry later.")


@app.exception_handler(StarletteHTTPException)
async def _http_error_handler(request: Request, exc: StarletteHTTPException):
    if exc.status_code == 404:
        return _error(404, "NOT_FOUND", f"No endpoint at {request.url.path}.")
    return _error(exc.status_code, "HTTP_ERROR", str(exc.detail))


@app.exception_handler(Exception)
async def _unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("unhandled error on %s", request.url.path)
    return _error(500, "INTERNAL_SERVER_ERROR", "Internal server error.")


@app.get("/healthz")
def healthz():
    return {"ok": True}


@app.get("/health")
def health():
    return {
        "status": "ok",
        "service": "safe-link-sandbox",
        "version": __version__,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@app.get("/api")
@_api_limit
def api_info(request: Request):
    return {
        "name": "Safe-Link Sandbox API",
        "version": __version__,
        "endpoints": {
            "POST /api/analyze": "Full analysis in a browser sandbox",
            "POST /api/quick-check": "Quick domain-only check",
            "POST /api/batch-check": f"Quick check of up to {settings.batch_max_urls} URLs",
            "GET /api/status": "Server status",
        },
        "riskLevels": {
            "safe": "0-30",
            "warning": "31-70",
            "danger": "71-100",
        },
    }


@app.get("/api/status")
@_api_limit
def api_status(request: Request):
    return _ok(
        {
            "status": "running",
            "uptime_s": round(time.monotonic() - _STARTED, 3),
            "ai_provider": settings.ai_provider,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
    )


@app.post("/api/analyze")
@_api_limit
async def analyze_endpoint(request: Request):
    body = await _json_body(request)
    url = _require_url(body)
    if len(url) > settings.max_url_length:
        raise ApiError(400, "URL_TOO_LONG", f"URLs cannot exceed {settings.max_url_length} characters.")

    options = body.get("options") or {}
    if not isinstance(options, dict):
        raise ApiError(400, "INVALID_REQUEST", "options must be an object.")
    timeout = options.get("timeout")
    if timeout is not None and (not isinstance(timeout, int) or isinstance(timeout, bool) or timeout < 1000):
        raise ApiError(400, "INVALID_REQUEST", "options.timeout must be an integer >= 1000 (ms).")

    async with _playwright_slot():
        try:
            result = await analyze_url(
                url,
                timeout_ms=timeout,
                take_screenshot=options.get("take_screenshot", options.get("takeScreenshot", True)) is not False,
                use_ai=options.get("use_ai", options.get("useAI", True)) is not False,
                settings=settings,
            )
        except InvalidURLError as e:
            raise ApiError(400, "INVALID_URL", str(e))
    return _ok(result.model_dump())


@app.post("/api/quick-check")
@_api_limit
async def quick_check_endpoint(request: Request):
    body = await _json_body(request)
    url = _require_url(body)
    return _ok(quick_check(url).model_dump(exclude_none=True))


@app.post("/api/batch-check")
@_api_limit
async def batch_check_endpoint(request: Request):
    body = await _json_body(request)
    urls = body.get("urls")
    if not urls or not isinstance(urls, list):
        raise ApiError(400, "MISSING_URLS", "An array of URLs is required.")
    if len(urls) > settings.batch_max_urls:
        raise ApiError(400, "TOO_MANY_URLS", f"At most {settings.batch_max_urls} URLs can be checked at once.")

    result = await asyncio.to_thread(batch_check, urls, max_workers=settings.batch_workers)
    return _ok(result.model_dump(exclude_none=True))
