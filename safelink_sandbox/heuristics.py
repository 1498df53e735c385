"""
Rule-based signal analyzers.

Each analyzer is a pure function over data that has already been collected
(a parsed URL, a page observation, a request log or a navigation error) and
returns a SignalResult whose score never exceeds that analyzer's cap.
Rules are plain (key, points, check) tuples evaluated in order; a check
returns the issue text when it fires and None otherwise.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Generic, Iterable, Mapping, TypeVar

from .models import NavigationSignal, NetworkRequestRecord, NetworkSignal, PageObservation, SignalResult
from .urls import ParsedURL, ascii_host, hostname_of

logger = logging.getLogger(__name__)

T = TypeVar("T")

DOMAIN_CAP = 40
CONTENT_CAP = 50
NETWORK_CAP = 20
NAVIGATION_CAP = 10


@dataclass(frozen=True)
class Rule(Generic[T]):
    key: str
    points: int
    check: Callable[[T], str | None]


def evaluate_rules(rules: Iterable[Rule[T]], subject: T, cap: int) -> SignalResult:
    score = 0
    issues: list[str] = []
    for rule in rules:
        issue = rule.check(subject)
        if issue:
            issues.append(issue)
            score += rule.points
    return SignalResult(score=min(score, cap), issues=issues)


def _first_match(patterns: tuple[re.Pattern[str], ...], text: str) -> bool:
    return any(p.search(text) for p in patterns)


# Domain

_IPV4_RE = re.compile(r"^\d{1,3}(?:\.\d{1,3}){3}$")

SUSPICIOUS_DOMAIN_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"\d{4,}"),
    re.compile(r"-{2,}"),
    re.compile(r"\.(tk|ml|ga|cf|gq)$", re.IGNORECASE),
    re.compile(r"[а-яА-ЯёЁ]"),  # homograph attacks
)

_STANDARD_PORTS = (80, 443)


def _ip_literal(url: ParsedURL) -> str | None:
    return "direct IP address access" if _IPV4_RE.match(url.host) else None


def _suspicious_pattern(url: ParsedURL) -> str | None:
    return "suspicious domain pattern" if _first_match(SUSPICIOUS_DOMAIN_PATTERNS, url.host) else None


def _excessive_subdomains(url: ParsedURL) -> str | None:
    subdomains = len(url.host.split(".")) - 2
    return f"excessive subdomains ({subdomains})" if subdomains > 3 else None


def _plain_http(url: ParsedURL) -> str | None:
    return "HTTPS not used" if url.scheme != "https" else None


def _non_standard_port(url: ParsedURL) -> str | None:
    if url.port is not None and url.port not in _STANDARD_PORTS:
        return f"non-standard port ({url.port})"
    return None


DOMAIN_RULES: tuple[Rule[ParsedURL], ...] = (
    Rule("ip_literal", 25, _ip_literal),
    Rule("suspicious_pattern", 15, _suspicious_pattern),
    Rule("excessive_subdomains", 10, _excessive_subdomains),
    Rule("plain_http", 15, _plain_http),
    Rule("non_standard_port", 10, _non_standard_port),
)


def analyze_domain(url: ParsedURL) -> SignalResult:
    return evaluate_rules(DOMAIN_RULES, url, DOMAIN_CAP)


# Content

PHISHING_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(p, re.IGNORECASE)
    for p in (
        r"login.*verify",
        r"account.*suspend",
        r"urgent.*action",
        r"password.*expire",
        r"verify.*identity",
        r"security.*alert",
        r"confirm.*bank",
        r"update.*payment",
    )
)

MALICIOUS_SCRIPT_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(p)
    for p in (
        r"eval\s*\(",
        r"document\.write",
        r"window\.location\s*=",
        r"innerHTML\s*=",
        r"fromCharCode",
        r"unescape\s*\(",
        r"btoa|atob",
    )
)

HIDDEN_FIELD_THRESHOLD = 5


def _phishing_phrasing(obs: PageObservation) -> str | None:
    return "suspected phishing phrasing" if _first_match(PHISHING_PATTERNS, obs.text) else None


def _password_field(obs: PageObservation) -> str | None:
    return "password field present" if obs.forms.has_password_field else None


def _external_form_action(obs: PageObservation) -> str | None:
    return "form submits to external server" if obs.forms.has_external_action else None


def _hidden_fields(obs: PageObservation) -> str | None:
    count = obs.forms.hidden_field_count
    return f"many hidden fields ({count})" if count > HIDDEN_FIELD_THRESHOLD else None


def _script_pattern(obs: PageObservation) -> str | None:
    return "suspicious script pattern" if _first_match(MALICIOUS_SCRIPT_PATTERNS, obs.scripts) else None


CONTENT_RULES: tuple[Rule[PageObservation], ...] = (
    Rule("phishing_phrasing", 20, _phishing_phrasing),
    Rule("password_field", 10, _password_field),
    Rule("external_form_action", 25, _external_form_action),
    Rule("hidden_fields", 10, _hidden_fields),
    Rule("script_pattern", 15, _script_pattern),
)


def analyze_content(observation: PageObservation | Mapping[str, Any] | None) -> SignalResult:
    """Score a page observation. Malformed observations never raise.

    A raw mapping (e.g. straight out of the browser) is validated first; a
    validation failure, or any other error while evaluating rules, is
    reported as a zero-scoring "analysis error" issue.
    """
    if observation is None:
        return SignalResult()
    try:
        obs = observation if isinstance(observation, PageObservation) else PageObservation.model_validate(observation)
        return evaluate_rules(CONTENT_RULES, obs, CONTENT_CAP)
    except Exception as exc:
        logger.warning("content analysis failed: %s", exc)
        first_line = str(exc).splitlines()[0] if str(exc) else exc.__class__.__name__
        return SignalResult(score=0, issues=[f"analysis error: {first_line}"])


# Network

DISTINCT_HOST_THRESHOLD = 10


def analyze_network(requests: Iterable[NetworkRequestRecord]) -> NetworkSignal:
    hosts: dict[str, None] = {}
    external_scripts: list[str] = []
    request_count = 0

    for req in requests:
        request_count += 1
        host = hostname_of(req.url)
        if not host:
            continue
        hosts.setdefault(host, None)
        if req.resource_type == "script" and host != ascii_host(req.originating_domain):
            external_scripts.append(host)

    score = 0
    issues: list[str] = []
    if len(hosts) > DISTINCT_HOST_THRESHOLD:
        issues.append(f"many external domains requested ({len(hosts)})")
        score += 10
    if external_scripts:
        issues.append(f"external scripts loaded ({len(external_scripts)})")
        score += 10

    return NetworkSignal(
        score=min(score, NETWORK_CAP),
        issues=issues,
        external_domains=list(hosts),
        request_count=request_count,
    )


# Navigation

def classify_navigation(error: str | None) -> NavigationSignal:
    if not error:
        return NavigationSignal()
    if "timeout" in error.lower():
        return NavigationSignal(score=10, issues=["page load timeout"], error=error)
    if "net::ERR_" in error:
        return NavigationSignal(score=5, issues=["network error"], error=error)
    return NavigationSignal(error=error)
