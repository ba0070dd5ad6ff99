import json
from datetime import date
from decimal import Decimal
from http.client import IncompleteRead
from urllib.error import URLError

import pytest

import text_understanding
from aggregation import BreakdownRow
from models import EXPENSE_CATEGORY_KEYS
from text_understanding import (
    FALLBACK_RECOMMENDATIONS,
    GroqProvider,
    InsightMetrics,
    ProviderError,
    TextUnderstandingService,
    category_for_number,
    strip_code_fence,
)

TODAY = date(2025, 11, 20)


class StubProvider:
    def __init__(self, response: str) -> None:
        self.response = response
        self.calls: list[tuple[str, float, int]] = []

    def complete(self, prompt: str, temperature: float, max_tokens: int) -> str:
        self.calls.append((prompt, temperature, max_tokens))
        return self.response


class FailingProvider:
    def __init__(self) -> None:
        self.calls = 0

    def complete(self, prompt: str, temperature: float, max_tokens: int) -> str:
        self.calls += 1
        raise ProviderError("upstream unavailable")


def _service(provider) -> TextUnderstandingService:
    return TextUnderstandingService(provider, today=TODAY, max_tokens=256)


def _metrics(current: str = "140", previous: str = "100") -> InsightMetrics:
    return InsightMetrics(
        total_expenses=Decimal("500"),
        total_income=Decimal("2000"),
        expenses_by_category=[
            BreakdownRow("transportation", Decimal("120"), 3),
            BreakdownRow("foodDining", Decimal("380"), 9),
        ],
        monthly_trend=[("2025-10", Decimal(previous)), ("2025-11", Decimal(current))],
        current_month_total=Decimal(current),
        previous_month_total=Decimal(previous),
    )


@pytest.mark.parametrize(
    ("response", "expected"),
    [
        ("1", "foodDining"),
        ("Category: 2", "transportation"),
        (" 5\n", "billsUtilities"),
        ("10", "other"),
        ("11", "other"),
        ("0", "other"),
        ("I am not sure", "other"),
    ],
)
def test_categorize_maps_first_number(response: str, expected: str) -> None:
    provider = StubProvider(response)

    assert _service(provider).categorize("Lunch with team") == expected
    prompt, temperature, max_tokens = provider.calls[0]
    assert '"Lunch with team"' in prompt
    assert temperature == 0.3
    assert max_tokens == 256


def test_categorize_falls_back_when_provider_fails() -> None:
    assert _service(FailingProvider()).categorize("Taxi") == "other"


def test_categorize_always_returns_known_key_for_any_locale() -> None:
    for locale in ("en", "pt", "es", "fr", "de", ""):
        result = _service(StubProvider("3")).categorize("Shoes", locale)
        assert result in EXPENSE_CATEGORY_KEYS


def test_categorize_uses_locale_instructions() -> None:
    provider = StubProvider("1")

    _service(provider).categorize("Almoço", "pt")

    assert "assistente de categorização financeira" in provider.calls[0][0]


def test_category_for_number_rejects_unusable_values() -> None:
    assert category_for_number(9) == "business"
    assert category_for_number("7") == "travel"
    assert category_for_number(None) == "other"
    assert category_for_number(True) == "other"
    assert category_for_number("seven") == "other"


def test_parse_from_text_reads_fenced_json() -> None:
    payload = {
        "amount": 42.5,
        "description": "Dinner",
        "categoryNumber": 1,
        "date": "2025-11-19",
    }
    provider = StubProvider(f"```json\n{json.dumps(payload)}\n```")

    parsed = _service(provider).parse_from_text("dinner 42.50 yesterday")

    assert parsed.as_dict() == {
        "amount": 42.5,
        "description": "Dinner",
        "category": "foodDining",
        "date": "2025-11-19",
    }
    assert provider.calls[0][1] == 0.2
    assert "2025-11-20" in provider.calls[0][0]


def test_parse_from_text_fills_missing_fields() -> None:
    provider = StubProvider(
        '{"amount": null, "description": "", "categoryNumber": 15, "date": "soon"}'
    )

    parsed = _service(provider).parse_from_text("something vague")

    assert parsed.amount is None
    assert parsed.description == "something vague"
    assert parsed.category == "other"
    assert parsed.date == "2025-11-20"


def test_parse_from_text_falls_back_on_malformed_response() -> None:
    parsed = _service(StubProvider("Sure! It cost about $12.")).parse_from_text(
        "Spent $12.50 at the cafe"
    )

    assert parsed.amount == 12.5
    assert parsed.description == "Spent $12.50 at the cafe"
    assert parsed.category is None
    assert parsed.date == "2025-11-20"


def test_parse_from_text_falls_back_on_provider_failure() -> None:
    provider = FailingProvider()

    parsed = _service(provider).parse_from_text("Spent 25 on groceries")

    assert provider.calls == 1
    assert parsed.amount == 25.0
    assert parsed.category is None


def test_parse_from_text_fallback_without_amount() -> None:
    parsed = _service(StubProvider("[1, 2]")).parse_from_text("coffee with Ana")

    assert parsed.amount is None
    assert parsed.description == "coffee with Ana"


def test_generate_insights_uses_provider_json() -> None:
    response = json.dumps(
        {
            "summary": "Solid month.",
            "trends": ["Food leads spending"],
            "recommendations": "not a list",
            "alerts": [],
        }
    )
    provider = StubProvider(response)

    report = _service(provider).generate_insights(_metrics())

    assert report.summary == "Solid month."
    assert report.trends == ["Food leads spending"]
    assert report.recommendations == []
    assert report.alerts == []
    prompt = provider.calls[0][0]
    assert "Savings Rate: 75.0%" in prompt
    assert "Month-over-Month Change: 40.0%" in prompt
    assert "foodDining: $380.00" in prompt


def test_fallback_insights_flag_large_increase() -> None:
    report = _service(FailingProvider()).generate_insights(_metrics("140", "100"))

    assert report.summary == (
        "You've spent $500.00 with a savings rate of 75.0%. "
        "Your spending increased by 40.0% this month."
    )
    assert report.trends == [
        "Top spending category is foodDining",
        "Significant increase in spending this month",
    ]
    assert report.recommendations == list(FALLBACK_RECOMMENDATIONS)
    assert len(report.alerts) == 1


def test_fallback_insights_moderate_increase_has_no_alert() -> None:
    report = _service(StubProvider("not json")).generate_insights(_metrics("125", "100"))

    assert report.trends[1] == "Significant increase in spending this month"
    assert report.alerts == []


def test_fallback_insights_stable_spending() -> None:
    report = _service(FailingProvider()).generate_insights(_metrics("90", "100"))

    assert "decreased by 10.0%" in report.summary
    assert report.trends[1] == "Spending is relatively stable"
    assert report.alerts == []


def test_fallback_insights_without_history() -> None:
    metrics = InsightMetrics(total_expenses=0, total_income=0)

    report = _service(FailingProvider()).generate_insights(metrics)

    assert report.summary.startswith("You've spent $0.00 with a savings rate of 0.0%.")
    assert report.trends[0] == "Top spending category is Unknown"


def test_strip_code_fence() -> None:
    assert strip_code_fence('```json\n{"a": 1}\n```') == '{"a": 1}'
    assert strip_code_fence("```\n[]\n```") == "[]"
    assert strip_code_fence('  {"a": 1} ') == '{"a": 1}'


class FakeResponse:
    def __init__(self, body: bytes) -> None:
        self.body = body

    def read(self) -> bytes:
        return self.body

    def __enter__(self) -> "FakeResponse":
        return self

    def __exit__(self, *exc: object) -> bool:
        return False


def test_groq_provider_posts_chat_completion(monkeypatch: pytest.MonkeyPatch) -> None:
    seen = {}

    def fake_urlopen(req, timeout):
        seen["url"] = req.full_url
        seen["timeout"] = timeout
        seen["auth"] = req.get_header("Authorization")
        seen["body"] = json.loads(req.data.decode("utf-8"))
        payload = {"choices": [{"message": {"content": "  4 \n"}}]}
        return FakeResponse(json.dumps(payload).encode("utf-8"))

    monkeypatch.setattr(text_understanding, "urlopen", fake_urlopen)
    provider = GroqProvider(api_key="secret", model="test-model", timeout=5)

    assert provider.complete("hello", 0.3, 64) == "4"
    assert seen["url"] == text_understanding.GROQ_CHAT_COMPLETIONS_URL
    assert seen["timeout"] == 5
    assert seen["auth"] == "Bearer secret"
    assert seen["body"] == {
        "model": "test-model",
        "messages": [{"role": "user", "content": "hello"}],
        "temperature": 0.3,
        "max_tokens": 64,
    }
    assert provider.name == "Groq (test-model)"


def test_groq_provider_wraps_transport_errors(monkeypatch: pytest.MonkeyPatch) -> None:
    def broken_urlopen(req, timeout):
        raise URLError("connection refused")

    monkeypatch.setattr(text_understanding, "urlopen", broken_urlopen)
    provider = GroqProvider(api_key="secret", model="m", timeout=1)

    with pytest.raises(ProviderError):
        provider.complete("hello", 0.3, 64)


def test_groq_provider_rejects_unexpected_payload(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(
        text_understanding,
        "urlopen",
        lambda req, timeout: FakeResponse(b'{"choices": []}'),
    )
    provider = GroqProvider(api_key="secret", model="m", timeout=1)

    with pytest.raises(ProviderError):
        provider.complete("hello", 0.3, 64)


def test_groq_provider_without_key_is_unavailable() -> None:
    provider = GroqProvider(api_key="", model="m", timeout=1)

    assert not provider.available
    with pytest.raises(ProviderError):
        provider.complete("hello", 0.3, 64)
    service = _service(provider)
    assert not service.is_available()
    assert service.categorize("Taxi") == "other"


def test_groq_provider_wraps_truncated_responses(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    def truncated_urlopen(req, timeout):
        raise IncompleteRead(b"partial")

    monkeypatch.setattr(text_understanding, "urlopen", truncated_urlopen)
    provider = GroqProvider(api_key="secret", model="m", timeout=1)

    with pytest.raises(ProviderError):
        provider.complete("hello", 0.3, 64)
    assert _service(provider).categorize("Taxi") == "other"


def test_groq_provider_rejects_non_text_content(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    payload = {"choices": [{"message": {"content": ["3"]}}]}
    monkeypatch.setattr(
        text_understanding,
        "urlopen",
        lambda req, timeout: FakeResponse(json.dumps(payload).encode("utf-8")),
    )
    provider = GroqProvider(api_key="secret", model="m", timeout=1)

    with pytest.raises(ProviderError):
        provider.complete("hello", 0.3, 64)
    assert _service(provider).categorize("Taxi") == "other"


def test_groq_provider_treats_null_content_as_empty(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    payload = {"choices": [{"message": {"content": None}}]}
    monkeypatch.setattr(
        text_understanding,
        "urlopen",
        lambda req, timeout: FakeResponse(json.dumps(payload).encode("utf-8")),
    )
    provider = GroqProvider(api_key="secret", model="m", timeout=1)

    assert provider.complete("hello", 0.3, 64) == ""


@pytest.mark.parametrize("raw", ["NaN", "Infinity", "-Infinity", "1e400", "-12", "0"])
def test_parse_from_text_drops_unusable_amounts(raw: str) -> None:
    provider = StubProvider(
        f'{{"amount": {raw}, "description": "x", "categoryNumber": 1}}'
    )

    parsed = _service(provider).parse_from_text("$25 coffee")

    assert parsed.amount is None
    assert parsed.category == "foodDining"


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ('"12,50"', 12.5),
        ('"1.234,56"', 1234.56),
        ('"1,250"', 1250.0),
        ('"$ 1,250.75"', 1250.75),
        ("42.5", 42.5),
    ],
)
def test_parse_from_text_reads_localized_amount_strings(
    raw: str, expected: float
) -> None:
    provider = StubProvider(
        f'{{"amount": {raw}, "description": "Almoço", "categoryNumber": 1}}'
    )

    assert _service(provider).parse_from_text("almoço 12,50", "pt").amount == expected
