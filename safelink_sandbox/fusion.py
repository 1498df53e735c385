"""
Combine the heuristic verdict with the AI verdict.

The numeric score is a 40/60 weighted blend, but the level is the more
severe of the two independent levels rather than a re-threshold of the
blended score: one alarming source is never averaged away. A caller can
therefore see e.g. score 62 with level "danger".
"""
from __future__ import annotations

from .ai_judge import AIOutcome, AIParticipated
from .models import AIAnalysis, FinalResult, HeuristicResult, RiskLevel

HEURISTIC_WEIGHT = 4
AI_WEIGHT = 6

_SEVERITY_ORDER: dict[str, int] = {"safe": 0, "warning": 1, "danger": 2}


def combined_score(heuristic_score: int, ai_score: int) -> int:
    # round-half-up of h*0.4 + a*0.6, in integers to avoid float drift
    return (heuristic_score * HEURISTIC_WEIGHT + ai_score * AI_WEIGHT + 5) // 10


def more_severe(a: RiskLevel, b: RiskLevel) -> RiskLevel:
    return a if _SEVERITY_ORDER[a] >= _SEVERITY_ORDER[b] else b


def fuse(heuristic: HeuristicResult, outcome: AIOutcome) -> FinalResult:
    base = heuristic.model_dump()

    if not isinstance(outcome, AIParticipated):
        return FinalResult(
            **base,
            ai_analysis=AIAnalysis(enabled=False, reason=outcome.reason, detail=outcome.detail),
        )

    ai = outcome.verdict
    base["risk_score"] = combined_score(heuristic.risk_score, ai.risk_score)
    base["risk_level"] = more_severe(heuristic.risk_level, ai.risk_level)
    return FinalResult(
        **base,
        ai_analysis=AIAnalysis(
            enabled=True,
            model=outcome.model,
            score=ai.risk_score,
            level=ai.risk_level,
            summary=ai.summary,
            findings=ai.findings,
            recommendations=ai.recommendations,
            confidence=ai.confidence,
        ),
    )
