import httpx

from safelink_sandbox import ai_judge
from safelink_sandbox.ai_judge import (
    AIParticipated,
    AISkipped,
    build_messages,
    build_prompt,
    judge_url,
    normalize_ai_output,
    parse_ai_response,
)
from safelink_sandbox.config import Settings


def test_parse_plain_json():
    verdict = parse_ai_response(
        '{"riskScore": 82, "riskLevel": "danger", "summary": "Fake bank login", '
        '"findings": [{"category": "phishing", "severity": "high", "description": "Impersonates a bank"}], '
        '"recommendations": ["Do not enter credentials"], "confidence": 88}'
    )
    assert verdict.risk_score == 82
    assert verdict.risk_level == "danger"
    assert verdict.findings[0].category == "phishing"
    assert verdict.recommendations == ["Do not enter credentials"]
    assert verdict.confidence == 88


def test_parse_fenced_json_with_chatter():
    content = 'Here is my analysis:\n```json\n{"riskScore": 12, "riskLevel": "safe", "summary": "ok", "confidence": 70}\n```'
    verdict = parse_ai_response(content)
    assert verdict.risk_score == 12
    assert verdict.risk_level == "safe"


def test_malformed_response_falls_back_to_low_confidence_verdict():
    content = "I could not decide, the page looked odd. {not json"
    verdict = parse_ai_response(content)
    assert verdict.risk_score == 50
    assert verdict.risk_level == "warning"
    assert verdict.confidence == 30
    assert len(verdict.findings) == 1
    assert verdict.findings[0].category == "suspicious"
    assert verdict.findings[0].severity == "medium"
    assert verdict.findings[0].description == "AI result unparsable"
    assert verdict.summary == content[:200]


def test_non_object_json_falls_back():
    assert parse_ai_response("[1, 2, 3]").confidence == 30


def test_normalize_repairs_fields():
    verdict = normalize_ai_output(
        {
            "risk_score": "140",
            "riskLevel": "High",
            "findings": ["bare string finding", {"category": "weird", "severity": "critical", "description": "x"}, 7],
            "recommendations": "single recommendation",
            "confidence": -5,
        }
    )
    assert verdict.risk_score == 100
    assert verdict.risk_level == "danger"
    assert [f.description for f in verdict.findings] == ["bare string finding", "x"]
    assert verdict.findings[1].category == "suspicious"
    assert verdict.findings[1].severity == "high"
    assert verdict.recommendations == ["single recommendation"]
    assert verdict.confidence == 0
    assert verdict.summary == "Analysis completed"


def test_normalize_derives_missing_level_from_score():
    assert normalize_ai_output({"riskScore": 55}).risk_level == "warning"
    assert normalize_ai_output({"riskScore": "nan?"}).risk_score == 50


def test_prompt_mentions_url_and_preliminary_result(make_heuristic):
    heuristic = make_heuristic(domain=25, url="https://192.0.2.10/login")
    prompt = build_prompt(heuristic)
    assert "https://192.0.2.10/login" in prompt
    assert '"riskScore": 25' in prompt


def test_messages_attach_screenshot_when_present():
    messages = build_messages("p", "QUJD")
    user_content = messages[1]["content"]
    assert user_content[1]["image_url"]["url"] == "data:image/png;base64,QUJD"
    assert len(build_messages("p", None)[1]["content"]) == 1


def test_judge_without_api_key_is_disabled(make_heuristic):
    outcome = judge_url(make_heuristic(), Settings())
    assert isinstance(outcome, AISkipped)
    assert outcome.reason == "disabled"


def test_judge_transport_failure_is_unreachable(monkeypatch, make_heuristic):
    def boom(prompt, screenshot, settings):
        raise httpx.ConnectError("connection refused")

    monkeypatch.setattr(ai_judge, "_call_openrouter", boom)
    outcome = judge_url(make_heuristic(), Settings(openrouter_api_key="k"))
    assert isinstance(outcome, AISkipped)
    assert outcome.reason == "unreachable"
    assert "connection refused" in outcome.detail


def test_judge_empty_reply_is_unparsable(monkeypatch, make_heuristic):
    monkeypatch.setattr(ai_judge, "_call_openrouter", lambda prompt, screenshot, settings: "")
    outcome = judge_url(make_heuristic(), Settings(openrouter_api_key="k"))
    assert isinstance(outcome, AISkipped)
    assert outcome.reason == "unparsable"


def test_judge_garbled_reply_still_participates(monkeypatch, make_heuristic):
    monkeypatch.setattr(ai_judge, "_call_gemini", lambda prompt, screenshot, settings: "looks fine to me")
    outcome = judge_url(make_heuristic(), Settings(gemini_api_key="k", gemini_model="gemini-test"))
    assert isinstance(outcome, AIParticipated)
    assert outcome.model == "gemini-test"
    assert outcome.verdict.confidence == 30


def test_openrouter_request_shape(monkeypatch, make_heuristic):
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["auth"] = request.headers["authorization"]
        seen["body"] = request.read()
        return httpx.Response(
            200,
            json={"choices": [{"message": {"content": '{"riskScore": 70, "riskLevel": "warning", "confidence": 60}'}}]},
        )

    real_client = httpx.Client

    def client_factory(*args, **kwargs):
        return real_client(*args, transport=httpx.MockTransport(handler), **kwargs)

    monkeypatch.setattr(ai_judge.httpx, "Client", client_factory)
    outcome = judge_url(make_heuristic(), Settings(openrouter_api_key="secret", openrouter_model="or-model"))

    assert isinstance(outcome, AIParticipated)
    assert outcome.verdict.risk_score == 70
    assert seen["auth"] == "Bearer secret"
    assert b'"model":"or-model"' in seen["body"].replace(b" ", b"")
