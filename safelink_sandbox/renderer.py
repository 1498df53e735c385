from __future__ import annotations

import asyncio
import base64
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Union

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import async_playwright

from .models import FormSummary, NetworkRequestRecord, PageObservation
from .urls import ascii_host, hostname_of

logger = logging.getLogger(__name__)

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

_LAUNCH_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-accelerated-2d-canvas",
    "--disable-gpu",
    "--window-size=1280,720",
    "--disable-extensions",
    "--disable-plugins",
    "--disable-sync",
    "--disable-translate",
    "--disable-background-networking",
]

# Extra wall-clock allowance on top of the navigation timeout for browser
# launch, DOM extraction and the screenshot.
RENDER_GRACE_S = 5.0

_OBSERVE_JS = """
() => {
  const forms = Array.from(document.querySelectorAll('form'));
  return {
    text: document.body ? (document.body.innerText || '') : '',
    form_count: forms.length,
    has_password_field: document.querySelectorAll('input[type="password"]').length > 0,
    hidden_field_count: document.querySelectorAll('input[type="hidden"]').length,
    actions: forms.map(f => f.getAttribute('action') || ''),
    scripts: Array.from(document.scripts).map(s => s.textContent || '').join('\\n'),
  };
}
"""


@dataclass(frozen=True)
class RenderedPage:
    observation: PageObservation | None = None
    requests: tuple[NetworkRequestRecord, ...] = ()
    title: str = ""
    final_url: str | None = None
    screenshot: str | None = None


@dataclass(frozen=True)
class RenderSucceeded:
    page: RenderedPage


@dataclass(frozen=True)
class RenderFailed:
    page: RenderedPage
    reason: str


RenderOutcome = Union[RenderSucceeded, RenderFailed]
Renderer = Callable[..., Awaitable[RenderOutcome]]


@dataclass
class _Capture:
    """Filled in while the browser runs so a cancelled render still yields partial data."""

    origin_host: str
    requests: list[NetworkRequestRecord] = field(default_factory=list)
    observation: PageObservation | None = None
    title: str = ""
    final_url: str | None = None
    screenshot: str | None = None
    navigation_error: str | None = None

    def freeze(self) -> RenderedPage:
        return RenderedPage(
            observation=self.observation,
            requests=tuple(self.requests),
            title=self.title,
            final_url=self.final_url,
            screenshot=self.screenshot,
        )


def has_external_action(actions: list[str], page_host: str | None) -> bool:
    page_host = ascii_host(page_host)
    for action in actions:
        if not action.lower().startswith(("http://", "https://")):
            continue
        host = hostname_of(action)
        if host and host != page_host:
            return True
    return False


def observation_from_dom(raw: dict[str, Any], page_host: str | None) -> PageObservation:
    actions = [str(a) for a in (raw.get("actions") or [])]
    return PageObservation(
        text=str(raw.get("text") or ""),
        forms=FormSummary(
            form_count=int(raw.get("form_count") or 0),
            has_password_field=bool(raw.get("has_password_field")),
            hidden_field_count=int(raw.get("hidden_field_count") or 0),
            has_external_action=has_external_action(actions, page_host),
            actions=actions,
        ),
        scripts=str(raw.get("scripts") or ""),
    )


async def _drive_browser(url: str, capture: _Capture, *, timeout_ms: int, take_screenshot: bool) -> None:
    async with async_playwright() as p:
        browser = await p.chromium.launch(headless=True, args=_LAUNCH_ARGS)
        try:
            context = await browser.new_context(
                viewport={"width": 1280, "height": 720},
                user_agent=USER_AGENT,
                java_script_enabled=True,
                ignore_https_errors=True,
            )
            page = await context.new_page()
            page.set_default_timeout(timeout_ms)
            page.set_default_navigation_timeout(timeout_ms)
            page.on(
                "request",
                lambda r: capture.requests.append(
                    NetworkRequestRecord(url=r.url, resource_type=r.resource_type, originating_domain=capture.origin_host)
                ),
            )

            try:
                await page.goto(url, wait_until="networkidle", timeout=timeout_ms)
            except PlaywrightError as e:
                capture.navigation_error = e.message or str(e)

            capture.final_url = page.url or url
            try:
                capture.title = await page.title()
            except PlaywrightError:
                capture.title = ""

            try:
                raw = await page.evaluate(_OBSERVE_JS)
                capture.observation = observation_from_dom(raw or {}, hostname_of(capture.final_url))
            except PlaywrightError as e:
                logger.info("page observation unavailable for %s: %s", url, e)

            if take_screenshot:
                try:
                    png = await page.screenshot(type="png", full_page=False)
                    capture.screenshot = base64.b64encode(png).decode("ascii")
                except PlaywrightError as e:
                    logger.info("screenshot failed for %s: %s", url, e)
        finally:
            await browser.close()


async def render_page(
    url: str,
    *,
    timeout_ms: int = 30000,
    take_screenshot: bool = True,
    deadline_s: float | None = None,
) -> RenderOutcome:
    """Render ``url`` in a headless browser and collect what the analyzers need.

    Never raises for collaborator problems: navigation errors, an exceeded
    deadline or a browser that fails to launch all come back as RenderFailed
    carrying whatever was collected before the failure.
    """
    capture = _Capture(origin_host=hostname_of(url) or "")
    deadline = deadline_s if deadline_s is not None else timeout_ms / 1000 + RENDER_GRACE_S

    reason: str | None
    try:
        await asyncio.wait_for(
            _drive_browser(url, capture, timeout_ms=timeout_ms, take_screenshot=take_screenshot),
            timeout=deadline,
        )
        reason = capture.navigation_error
    except asyncio.TimeoutError:
        reason = f"Render timeout: deadline of {deadline:.1f}s exceeded"
        logger.warning("render of %s abandoned after %.1fs", url, deadline)
    except Exception as e:
        reason = str(e) or e.__class__.__name__
        logger.warning("render of %s failed: %s", url, reason)

    page = capture.freeze()
    if reason:
        return RenderFailed(page=page, reason=reason)
    return RenderSucceeded(page=page)
