from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

RiskLevel = Literal["safe", "warning", "danger"]
FindingCategory = Literal["phishing", "scam", "malware", "suspicious", "safe"]
FindingSeverity = Literal["low", "medium", "high"]
SkipReason = Literal["disabled", "unreachable", "unparsable"]


class FormSummary(BaseModel):
    form_count: int = Field(0, ge=0)
    has_password_field: bool = False
    hidden_field_count: int = Field(0, ge=0)
    has_external_action: bool = False
    actions: list[str] = Field(default_factory=list)


class PageObservation(BaseModel):
    """What the browser saw on the page: visible text, forms and inline scripts."""

    model_config = ConfigDict(frozen=True)

    text: str = ""
    forms: FormSummary = Field(default_factory=FormSummary)
    scripts: str = ""


class NetworkRequestRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    url: str
    resource_type: str
    originating_domain: str


class SignalResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    score: int = Field(0, ge=0)
    issues: tuple[str, ...] = ()


class NetworkSignal(SignalResult):
    external_domains: tuple[str, ...] = ()
    request_count: int = 0


class NavigationSignal(SignalResult):
    error: str | None = None


class HeuristicDetails(BaseModel):
    model_config = ConfigDict(frozen=True)

    domain: SignalResult
    content: SignalResult
    network: NetworkSignal
    navigation: NavigationSignal


class PageInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    title: str = ""
    final_url: str | None = None
    redirect_count: int = 0


class HeuristicResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    url: str
    risk_score: int = Field(..., ge=0, le=100)
    risk_level: RiskLevel
    details: HeuristicDetails
    page: PageInfo = Field(default_factory=PageInfo)
    screenshot: str | None = None
    analysis_time_ms: int
    analyzed_at: str


class AIFinding(BaseModel):
    category: FindingCategory
    severity: FindingSeverity
    description: str


class AIVerdict(BaseModel):
    risk_score: int = Field(..., ge=0, le=100)
    risk_level: RiskLevel
    summary: str
    findings: list[AIFinding] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
    confidence: int = Field(..., ge=0, le=100)


class AIAnalysis(BaseModel):
    enabled: bool
    reason: SkipReason | None = None
    detail: str | None = None
    model: str | None = None
    score: int | None = None
    level: RiskLevel | None = None
    summary: str | None = None
    findings: list[AIFinding] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
    confidence: int | None = None


class FinalResult(HeuristicResult):
    ai_analysis: AIAnalysis


class QuickCheckResult(BaseModel):
    url: str
    valid: bool
    risk_score: int = Field(..., ge=0, le=100)
    risk_level: RiskLevel | Literal["unknown"]
    issues: tuple[str, ...] | None = None
    message: str


class BatchSummary(BaseModel):
    safe: int = 0
    warning: int = 0
    danger: int = 0
    invalid: int = 0


class BatchResult(BaseModel):
    total: int
    results: list[QuickCheckResult]
    summary: BatchSummary
