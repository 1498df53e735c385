from __future__ import annotations

import asyncio
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Iterable

from .ai_judge import AIOutcome, AISkipped, judge_url
from .config import Settings, get_settings
from .fusion import fuse
from .heuristics import analyze_content, analyze_domain, analyze_network, classify_navigation
from .models import (
    BatchResult,
    BatchSummary,
    FinalResult,
    HeuristicResult,
    PageInfo,
    QuickCheckResult,
)
from .renderer import RenderedPage, RenderFailed, Renderer, render_page
from .scoring import aggregate, risk_level_for
from .urls import InvalidURLError, ParsedURL, parse_url

logger = logging.getLogger(__name__)

Judge = Callable[[HeuristicResult, Settings], AIOutcome]


def _redirect_count(target: ParsedURL, page: RenderedPage) -> int:
    return sum(1 for r in page.requests if r.resource_type == "document" and r.url != target.raw)


def score_page(
    target: ParsedURL,
    page: RenderedPage,
    *,
    navigation_error: str | None,
    started_at: float,
) -> HeuristicResult:
    """Run the four analyzers over collected page data and aggregate them."""
    return aggregate(
        target.raw,
        domain=analyze_domain(target),
        content=analyze_content(page.observation),
        network=analyze_network(page.requests),
        navigation=classify_navigation(navigation_error),
        analysis_time_ms=int((time.perf_counter() - started_at) * 1000),
        page=PageInfo(
            title=page.title,
            final_url=page.final_url or target.raw,
            redirect_count=_redirect_count(target, page),
        ),
        screenshot=page.screenshot,
    )


async def _consult_ai(heuristic: HeuristicResult, settings: Settings, judge: Judge) -> AIOutcome:
    try:
        return await asyncio.wait_for(
            asyncio.to_thread(judge, heuristic, settings),
            timeout=settings.ai_timeout_s + 1.0,
        )
    except asyncio.TimeoutError:
        logger.warning("AI verdict for %s timed out after %.1fs", heuristic.url, settings.ai_timeout_s)
        return AISkipped(reason="unreachable", detail="AI request timed out")
    except Exception as e:
        logger.warning("AI verdict for %s failed: %s", heuristic.url, e)
        return AISkipped(reason="unreachable", detail=str(e) or e.__class__.__name__)


async def analyze_url(
    url: str,
    *,
    timeout_ms: int | None = None,
    take_screenshot: bool = True,
    use_ai: bool = True,
    settings: Settings | None = None,
    renderer: Renderer = render_page,
    judge: Judge = judge_url,
) -> FinalResult:
    """Full analysis: render the page, score it, then fuse with the AI verdict.

    Raises InvalidURLError before doing any work when ``url`` is not an
    http(s) URL. Every other failure (render timeout, browser crash, AI
    outage) is folded into the result.
    """
    settings = settings or get_settings()
    started_at = time.perf_counter()
    target = parse_url(url)
    timeout = min(timeout_ms or settings.render_timeout_ms, settings.render_timeout_ms)

    logger.info("analysis started: %s (timeout %dms)", target.raw, timeout)
    outcome = await renderer(target.raw, timeout_ms=timeout, take_screenshot=take_screenshot)
    navigation_error = outcome.reason if isinstance(outcome, RenderFailed) else None

    heuristic = score_page(target, outcome.page, navigation_error=navigation_error, started_at=started_at)

    if use_ai:
        ai_outcome = await _consult_ai(heuristic, settings, judge)
    else:
        ai_outcome = AISkipped(reason="disabled", detail="AI analysis not requested")

    result = fuse(heuristic, ai_outcome)
    logger.info("analysis finished: %s score=%d level=%s", target.raw, result.risk_score, result.risk_level)
    return result


def quick_check(url: Any) -> QuickCheckResult:
    """Domain-only verdict without rendering the page or calling the AI."""
    try:
        target = parse_url(url)
    except InvalidURLError:
        return QuickCheckResult(
            url=url if isinstance(url, str) else str(url),
            valid=False,
            risk_score=0,
            risk_level="unknown",
            message="invalid URL format",
        )

    domain = analyze_domain(target)
    return QuickCheckResult(
        url=url,
        valid=True,
        risk_score=domain.score,
        risk_level=risk_level_for(domain.score),
        issues=domain.issues,
        message="domain analysis found risk factors" if domain.issues else "domain analysis passed",
    )


def batch_check(urls: Iterable[Any], *, max_workers: int = 4) -> BatchResult:
    items = list(urls)
    with ThreadPoolExecutor(max_workers=max(1, min(max_workers, len(items) or 1))) as pool:
        results = list(pool.map(quick_check, items))

    summary = BatchSummary()
    for r in results:
        if not r.valid:
            summary.invalid += 1
        elif r.risk_level == "safe":
            summary.safe += 1
        elif r.risk_level == "warning":
            summary.warning += 1
        elif r.risk_level == "danger":
            summary.danger += 1

    return BatchResult(total=len(items), results=results, summary=summary)
