from __future__ import annotations

from datetime import datetime, timezone

from .models import HeuristicDetails, HeuristicResult, NavigationSignal, NetworkSignal, PageInfo, RiskLevel, SignalResult

# 0-30 safe, 31-70 warning, 71-100 danger
SAFE_MAX = 30
WARNING_MAX = 70

MAX_SCORE = 100


def clamp_score(score: int) -> int:
    return max(0, min(MAX_SCORE, int(score)))


def risk_level_for(score: int) -> RiskLevel:
    if score <= SAFE_MAX:
        return "safe"
    if score <= WARNING_MAX:
        return "warning"
    return "danger"


def aggregate(
    url: str,
    *,
    domain: SignalResult,
    content: SignalResult,
    network: NetworkSignal,
    navigation: NavigationSignal,
    analysis_time_ms: int,
    page: PageInfo | None = None,
    screenshot: str | None = None,
) -> HeuristicResult:
    total = clamp_score(domain.score + content.score + network.score + navigation.score)
    return HeuristicResult(
        url=url,
        risk_score=total,
        risk_level=risk_level_for(total),
        details=HeuristicDetails(domain=domain, content=content, network=network, navigation=navigation),
        page=page or PageInfo(),
        screenshot=screenshot,
        analysis_time_ms=analysis_time_ms,
        analyzed_at=datetime.now(timezone.utc).isoformat(),
    )
