"""
AI-powered risk classification.

Sends the URL, a short page summary and the preliminary heuristic result
(plus the screenshot when one was taken) to a Gemini model, either directly
through the google-genai SDK or through OpenRouter's chat completions API,
and turns the reply into an AIVerdict. Every failure mode is reported as an
AISkipped outcome; this module never raises to its caller.
"""
from __future__ import annotations

import base64
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Union

import httpx

from .config import Settings
from .models import AIFinding, AIVerdict, HeuristicResult, SkipReason
from .scoring import risk_level_for

logger = logging.getLogger(__name__)

OPENROUTER_API_URL = "https://openrouter.ai/api/v1/chat/completions"

SYSTEM_PROMPT = (
    "You are a cybersecurity expert who assesses the safety of websites. "
    "Always respond in JSON."
)

_ALLOWED_CATEGORIES = {"phishing", "scam", "malware", "suspicious", "safe"}
_ALLOWED_SEVERITIES = {"low", "medium", "high"}

_LEVEL_MAP = {
    "safe": "safe",
    "low": "safe",
    "ok": "safe",
    "legitimate": "safe",
    "warning": "warning",
    "warn": "warning",
    "caution": "warning",
    "medium": "warning",
    "suspicious": "warning",
    "danger": "danger",
    "dangerous": "danger",
    "high": "danger",
    "malicious": "danger",
    "phishing": "danger",
}

_SEVERITY_MAP = {"med": "medium", "mid": "medium", "moderate": "medium", "critical": "high", "severe": "high"}

_FENCED_JSON_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```")
_JSON_OBJECT_RE = re.compile(r"\{[\s\S]*\}")


@dataclass(frozen=True)
class AIParticipated:
    verdict: AIVerdict
    model: str


@dataclass(frozen=True)
class AISkipped:
    reason: SkipReason
    detail: str | None = None


AIOutcome = Union[AIParticipated, AISkipped]


def _clamp(value: Any, default: int) -> int:
    try:
        n = int(round(float(value)))
    except (TypeError, ValueError, OverflowError):
        n = default
    return max(0, min(100, n))


def _as_str_list(value: Any) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, list):
        value = [value]
    out: list[str] = []
    for item in value:
        if item is None:
            continue
        s = str(item).strip()
        if s:
            out.append(s)
    return out


def _normalize_finding(raw: Any) -> AIFinding | None:
    if isinstance(raw, str):
        raw = {"description": raw}
    if not isinstance(raw, dict):
        return None

    description = str(raw.get("description") or "").strip()
    if not description:
        return None

    category = str(raw.get("category") or "suspicious").strip().lower()
    if category not in _ALLOWED_CATEGORIES:
        category = "suspicious"

    severity = str(raw.get("severity") or "medium").strip().lower()
    severity = _SEVERITY_MAP.get(severity, severity)
    if severity not in _ALLOWED_SEVERITIES:
        severity = "medium"

    return AIFinding(category=category, severity=severity, description=description)


def normalize_ai_output(raw: dict[str, Any]) -> AIVerdict:
    """Clamp/normalize a model reply to the AIVerdict schema.

    Models occasionally return snake_case keys, out-of-range numbers or
    unexpected level names; each field is repaired independently.
    """
    score = _clamp(raw.get("riskScore", raw.get("risk_score")), 50)

    level_raw = str(raw.get("riskLevel", raw.get("risk_level")) or "").strip().lower()
    level = _LEVEL_MAP.get(level_raw) or risk_level_for(score)

    raw_findings = raw.get("findings") or []
    if not isinstance(raw_findings, list):
        raw_findings = [raw_findings]
    findings = [f for f in (_normalize_finding(x) for x in raw_findings) if f is not None]

    summary = str(raw.get("summary") or "").strip() or "Analysis completed"

    return AIVerdict(
        risk_score=score,
        risk_level=level,
        summary=summary,
        findings=findings,
        recommendations=_as_str_list(raw.get("recommendations")),
        confidence=_clamp(raw.get("confidence"), 50),
    )


def fallback_verdict(content: str) -> AIVerdict:
    return AIVerdict(
        risk_score=50,
        risk_level="warning",
        summary=content[:200],
        findings=[AIFinding(category="suspicious", severity="medium", description="AI result unparsable")],
        recommendations=["Manual review is recommended."],
        confidence=30,
    )


def parse_ai_response(content: str) -> AIVerdict:
    """Parse the model's text reply; malformed output becomes a low-confidence verdict."""
    fenced = _FENCED_JSON_RE.search(content)
    if fenced:
        candidate = fenced.group(1)
    else:
        obj = _JSON_OBJECT_RE.search(content)
        candidate = obj.group(0) if obj else content
    try:
        parsed = json.loads(candidate)
    except ValueError:
        logger.warning("AI response is not valid JSON; using fallback verdict")
        return fallback_verdict(content)
    if not isinstance(parsed, dict):
        logger.warning("AI response JSON is not an object; using fallback verdict")
        return fallback_verdict(content)
    return normalize_ai_output(parsed)


def build_prompt(heuristic: HeuristicResult) -> str:
    details = heuristic.details
    preliminary = {
        "riskScore": heuristic.risk_score,
        "riskLevel": heuristic.risk_level,
        "domainIssues": details.domain.issues,
        "contentIssues": details.content.issues,
        "networkIssues": details.network.issues,
    }
    return f"""You are a cybersecurity expert. Analyze the following URL and web page information and assess the risk of phishing, scams and malware.

## Target
- **URL**: {heuristic.url}
- **Page title**: {heuristic.page.title or 'none'}
- **Final URL**: {heuristic.page.final_url or heuristic.url}
- **Redirect count**: {heuristic.page.redirect_count}
- **External domain count**: {len(details.network.external_domains)}

## Preliminary heuristic analysis
{json.dumps(preliminary, indent=2, ensure_ascii=False)}

## What to assess
Using the information above and the attached screenshot (if any), assess:

1. **Phishing**: is the page impersonating a legitimate site?
2. **Scam patterns**: fraudulent wording or manufactured urgency
3. **Technical risk**: malicious scripts, suspicious redirects
4. **Visual risk**: forged logos, fake security badges, alarming warnings
5. **Overall**: a combined risk judgment

## Response format (JSON)
{{
  "riskScore": <number 0-100>,
  "riskLevel": "safe" | "warning" | "danger",
  "summary": "<one sentence>",
  "findings": [
    {{
      "category": "phishing" | "scam" | "malware" | "suspicious" | "safe",
      "severity": "low" | "medium" | "high",
      "description": "<what was found>"
    }}
  ],
  "recommendations": ["<recommended user action>"],
  "confidence": <number 0-100>
}}"""


def build_messages(prompt: str, screenshot: str | None) -> list[dict[str, Any]]:
    content: list[dict[str, Any]] = [{"type": "text", "text": prompt}]
    if screenshot:
        content.append({"type": "image_url", "image_url": {"url": f"data:image/png;base64,{screenshot}"}})
    return [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": content},
    ]


def _call_openrouter(prompt: str, screenshot: str | None, settings: Settings) -> str:
    with httpx.Client(timeout=settings.ai_timeout_s) as client:
        res = client.post(
            OPENROUTER_API_URL,
            headers={
                "Authorization": f"Bearer {settings.openrouter_api_key}",
                "Content-Type": "application/json",
                "HTTP-Referer": "https://safe-link-sandbox.local",
                "X-Title": "Safe-Link Sandbox",
            },
            json={
                "model": settings.openrouter_model,
                "messages": build_messages(prompt, screenshot),
                "max_tokens": 2048,
                "temperature": 0.3,
                "response_format": {"type": "json_object"},
            },
        )
        res.raise_for_status()
        data = res.json()
    choices = data.get("choices") or [{}]
    return ((choices[0].get("message") or {}).get("content") or "").strip()


def _call_gemini(prompt: str, screenshot: str | None, settings: Settings) -> str:
    from google import genai
    from google.genai import types

    client = genai.Client(
        api_key=settings.gemini_api_key,
        http_options=types.HttpOptions(timeout=int(settings.ai_timeout_s * 1000)),
    )

    parts = [types.Part.from_text(text=prompt)]
    if screenshot:
        parts.append(types.Part.from_bytes(data=base64.b64decode(screenshot), mime_type="image/png"))

    config = types.GenerateContentConfig(
        system_instruction=SYSTEM_PROMPT,
        response_mime_type="application/json",
        temperature=0.3,
        max_output_tokens=2048,
    )
    resp = client.models.generate_content(
        model=settings.gemini_model,
        contents=[types.Content(role="user", parts=parts)],
        config=config,
    )
    return (getattr(resp, "text", None) or "").strip()


def judge_url(heuristic: HeuristicResult, settings: Settings) -> AIOutcome:
    """Ask the configured model for a verdict on an already-scored page."""
    provider = settings.ai_provider
    if provider is None:
        return AISkipped(reason="disabled", detail="no AI API key configured")

    prompt = build_prompt(heuristic)
    model = settings.gemini_model if provider == "gemini" else settings.openrouter_model
    try:
        if provider == "gemini":
            content = _call_gemini(prompt, heuristic.screenshot, settings)
        else:
            content = _call_openrouter(prompt, heuristic.screenshot, settings)
    except Exception as e:
        logger.warning("AI call to %s failed: %s", provider, e)
        return AISkipped(reason="unreachable", detail=str(e) or e.__class__.__name__)

    if not content:
        return AISkipped(reason="unparsable", detail="empty AI response")

    verdict = parse_ai_response(content)
    logger.info("AI verdict from %s: score=%s confidence=%s", model, verdict.risk_score, verdict.confidence)
    return AIParticipated(verdict=verdict, model=model)
