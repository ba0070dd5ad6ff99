"""Text-understanding helpers backed by a generative text provider.

Three operations are offered: expense categorisation, free-text expense
parsing and insight summaries. None of them lets a provider failure reach
the caller. Timeouts, transport errors and unusable responses all resolve to
a deterministic result computed locally from the input.
"""

from __future__ import annotations

import json
import logging
import math
import re
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, InvalidOperation
from http.client import HTTPException
from typing import Optional, Protocol, Sequence, Union
from urllib.request import Request, urlopen

from aggregation import BreakdownRow
from config import get_settings
from models import EXPENSE_CATEGORY_KEYS
from periods import local_today

logger = logging.getLogger(__name__)

GROQ_CHAT_COMPLETIONS_URL = "https://api.groq.com/openai/v1/chat/completions"
FALLBACK_CATEGORY = "other"
ALERT_CHANGE_PCT = Decimal("30")
VOLATILE_CHANGE_PCT = Decimal("20")

_FIRST_INTEGER = re.compile(r"\d+")
_FIRST_AMOUNT = re.compile(r"\$?(\d+\.?\d*)")
_CODE_FENCE_OPEN = re.compile(r"^```[a-zA-Z]*\s*")
_CODE_FENCE_CLOSE = re.compile(r"\s*```$")
# "12,50" and "1.234,56": a comma before exactly two trailing digits.
_DECIMAL_COMMA = re.compile(r",(\d{2})$")

Number = Union[Decimal, int, float, str]


class ProviderError(RuntimeError):
    """Raised by a text provider on transport, auth, quota or format failure."""


class TextProvider(Protocol):
    def complete(self, prompt: str, temperature: float, max_tokens: int) -> str:
        ...


class GroqProvider:
    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> None:
        settings = get_settings()
        self.api_key = settings.groq_api_key if api_key is None else api_key
        self.model = model or settings.groq_model
        self.timeout = settings.ai_timeout_secs if timeout is None else timeout

    @property
    def available(self) -> bool:
        return bool(self.api_key)

    @property
    def name(self) -> str:
        return f"Groq ({self.model})"

    def complete(self, prompt: str, temperature: float, max_tokens: int) -> str:
        if not self.api_key:
            raise ProviderError("GROQ_API_KEY is not set")
        body = json.dumps(
            {
                "model": self.model,
                "messages": [{"role": "user", "content": prompt}],
                "temperature": temperature,
                "max_tokens": max_tokens,
            }
        ).encode("utf-8")
        req = Request(
            GROQ_CHAT_COMPLETIONS_URL,
            data=body,
            method="POST",
            headers={
                "Accept": "application/json",
                "Content-Type": "application/json",
                "Authorization": f"Bearer {self.api_key}",
                "User-Agent": "finance-insights",
            },
        )
        try:
            with urlopen(req, timeout=self.timeout) as resp:
                payload = json.loads(resp.read().decode("utf-8"))
        except (
            OSError,
            HTTPException,
            json.JSONDecodeError,
            UnicodeDecodeError,
        ) as exc:
            raise ProviderError("Failed to generate response from Groq") from exc

        try:
            content = payload["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise ProviderError("Unexpected provider response") from exc
        if content is None:
            return ""
        if not isinstance(content, str):
            raise ProviderError("Unexpected provider response")
        return content.strip()


@dataclass(frozen=True)
class ParsedExpense:
    amount: Optional[float]
    description: str
    category: Optional[str]
    date: str

    def as_dict(self) -> dict[str, object]:
        return {
            "amount": self.amount,
            "description": self.description,
            "category": self.category,
            "date": self.date,
        }


@dataclass(frozen=True)
class InsightReport:
    summary: str
    trends: list[str] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)
    alerts: list[str] = field(default_factory=list)

    def as_dict(self) -> dict[str, object]:
        return {
            "summary": self.summary,
            "trends": list(self.trends),
            "recommendations": list(self.recommendations),
            "alerts": list(self.alerts),
        }


def _money(value: Number) -> Decimal:
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return Decimal("0")


@dataclass(frozen=True)
class InsightMetrics:
    """Numbers the insight prompt is built from."""

    total_expenses: Number
    total_income: Number
    expenses_by_category: Sequence[BreakdownRow] = ()
    # Chronological (month key, amount) pairs.
    monthly_trend: Sequence[tuple[str, Number]] = ()
    current_month_total: Number = 0
    previous_month_total: Number = 0

    @property
    def savings_rate(self) -> Decimal:
        income = _money(self.total_income)
        if income <= 0:
            return Decimal("0")
        return (income - _money(self.total_expenses)) / income * 100

    @property
    def monthly_change(self) -> Decimal:
        previous = _money(self.previous_month_total)
        if previous <= 0:
            return Decimal("0")
        return (_money(self.current_month_total) - previous) / previous * 100

    def top_categories(self, limit: int = 3) -> list[BreakdownRow]:
        rows = sorted(
            self.expenses_by_category, key=lambda r: (-r.amount, r.category)
        )
        return rows[:limit]


CATEGORY_LABELS = {
    "en": "Food & Dining, Transportation, Shopping, Entertainment, Bills & Utilities, Healthcare, Travel, Education, Business, Other",
    "pt": "Alimentação e Refeições, Transporte, Compras, Entretenimento, Contas e Utilidades, Saúde, Viagem, Educação, Negócios, Outro",
    "es": "Comida y Restaurantes, Transporte, Compras, Entretenimiento, Facturas y Servicios, Salud, Viaje, Educación, Negocios, Otro",
    "fr": "Nourriture et Restaurants, Transport, Achats, Divertissement, Factures et Services, Santé, Voyage, Éducation, Affaires, Autre",
}

CATEGORIZE_INSTRUCTIONS = {
    "en": "You are a financial categorization assistant.",
    "pt": "Você é um assistente de categorização financeira.",
    "es": "Eres un asistente de categorización financiera.",
    "fr": "Vous êtes un assistant de catégorisation financière.",
}

PARSE_INSTRUCTIONS = {
    "en": "You are a financial assistant that extracts expense information from natural language in English.",
    "pt": "Você é um assistente financeiro que extrai informações de despesas de linguagem natural em Português.",
    "es": "Eres un asistente financiero que extrae información de gastos del lenguaje natural en Español.",
    "fr": "Vous êtes un assistant financier qui extrait des informations de dépenses du langage naturel en Français.",
}

INSIGHT_INSTRUCTIONS = {
    "en": "You are a professional financial advisor. Generate insights in English.",
    "pt": "Você é um consultor financeiro profissional. Gere insights em Português.",
    "es": "Eres un asesor financiero profesional. Genera información en Español.",
    "fr": "Vous êtes un conseiller financier professionnel. Générez des informations en Français.",
}

SUPPORTED_LOCALES = tuple(CATEGORY_LABELS)

FALLBACK_RECOMMENDATIONS = (
    "Review your top spending categories for optimization opportunities",
    "Set monthly budgets for each category",
    "Track expenses regularly to stay on target",
)


def _localized(table: dict[str, str], locale: str) -> str:
    return table.get((locale or "en").lower(), table["en"])


def strip_code_fence(text: str) -> str:
    cleaned = text.strip()
    if cleaned.startswith("```"):
        cleaned = _CODE_FENCE_OPEN.sub("", cleaned)
        cleaned = _CODE_FENCE_CLOSE.sub("", cleaned)
    return cleaned.strip()


def category_for_number(value: object) -> str:
    """Map a 1-based category number to its key, ``other`` when unusable."""
    if isinstance(value, bool):
        return FALLBACK_CATEGORY
    try:
        number = int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return FALLBACK_CATEGORY
    if 1 <= number <= len(EXPENSE_CATEGORY_KEYS):
        return EXPENSE_CATEGORY_KEYS[number - 1]
    return FALLBACK_CATEGORY


def _coerce_amount(value: object) -> Optional[float]:
    """Positive finite amount from a provider value, else ``None``."""
    if not value or isinstance(value, bool):
        return None
    text = str(value).replace("$", "").replace(" ", "").strip()
    if _DECIMAL_COMMA.search(text):
        text = _DECIMAL_COMMA.sub(r".\1", text.replace(".", ""))
    else:
        text = text.replace(",", "")
    try:
        amount = float(text)
    except ValueError:
        return None
    if not math.isfinite(amount) or amount <= 0:
        return None
    return amount


def _string_list(value: object) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(item) for item in value]


class TextUnderstandingService:
    def __init__(
        self,
        provider: Optional[TextProvider] = None,
        *,
        today: Optional[date] = None,
        max_tokens: Optional[int] = None,
    ) -> None:
        self.provider = provider if provider is not None else GroqProvider()
        self.max_tokens = max_tokens or get_settings().ai_max_tokens
        self._today = today

    def today(self) -> date:
        return self._today or local_today()

    def is_available(self) -> bool:
        return bool(getattr(self.provider, "available", True))

    @property
    def provider_name(self) -> str:
        return getattr(self.provider, "name", type(self.provider).__name__)

    def _complete(
        self, operation: str, prompt: str, temperature: float
    ) -> Optional[str]:
        try:
            return self.provider.complete(prompt, temperature, self.max_tokens)
        except ProviderError as exc:
            logger.warning(f"ai_fallback: operation={operation} reason={exc}")
            return None

    # Categorisation

    def categorize(self, description: str, locale: str = "en") -> str:
        prompt = f"""{_localized(CATEGORIZE_INSTRUCTIONS, locale)} Categorize the following expense into exactly ONE of these categories:
{_localized(CATEGORY_LABELS, locale)}

Expense description: "{description}"

Rules:
- Respond with ONLY the category number (1-10), nothing else
- Choose the most appropriate category
- If unsure, use 10 (Other/Outro/Otro/Autre)

Category number:"""
        response = self._complete("categorize", prompt, 0.3)
        if response is None:
            return FALLBACK_CATEGORY
        match = _FIRST_INTEGER.search(response)
        if not match:
            logger.warning("ai_fallback: operation=categorize reason=no_number")
            return FALLBACK_CATEGORY
        return category_for_number(match.group(0))

    # Free-text parsing

    def parse_from_text(self, text: str, locale: str = "en") -> ParsedExpense:
        today = self.today().isoformat()
        prompt = f"""{_localized(PARSE_INSTRUCTIONS, locale)}

Parse the following text into structured expense data:
"{text}"

Extract:
1. Amount (numeric value only, no currency symbols)
2. Description (brief description of the expense)
3. Category (choose number 1-10: 1=Food/Comida/Alimentação, 2=Transport/Transporte, 3=Shopping/Compras, 4=Entertainment/Entretenimento, 5=Bills/Contas/Facturas, 6=Healthcare/Saúde/Salud/Santé, 7=Travel/Viagem/Viaje/Voyage, 8=Education/Educação/Educación/Éducation, 9=Business/Negócios/Negocios/Affaires, 10=Other/Outro/Otro/Autre)
4. Date (ISO format YYYY-MM-DD, use today if not specified: {today})

Rules:
- If amount is not found, return null
- If category is not mentioned, suggest the most appropriate category number
- If date is not mentioned or is "today", use today's date
- Parse relative dates like "yesterday" or "last week"
- Return ONLY valid JSON, nothing else

Response format (JSON only):
{{
  "amount": <number or null>,
  "description": "<string>",
  "categoryNumber": <1-10>,
  "date": "<YYYY-MM-DD>"
}}"""
        response = self._complete("parse_from_text", prompt, 0.2)
        if response is not None:
            try:
                parsed = json.loads(strip_code_fence(response))
            except json.JSONDecodeError:
                parsed = None
            if isinstance(parsed, dict):
                return ParsedExpense(
                    amount=_coerce_amount(parsed.get("amount")),
                    description=str(parsed.get("description") or text),
                    category=category_for_number(parsed.get("categoryNumber") or 10),
                    date=self._parsed_date(parsed.get("date"), today),
                )
            logger.warning("ai_fallback: operation=parse_from_text reason=malformed")
        return self.fallback_parse(text, today)

    @staticmethod
    def _parsed_date(value: object, today: str) -> str:
        if not isinstance(value, str) or not value:
            return today
        try:
            return date.fromisoformat(value).isoformat()
        except ValueError:
            return today

    @staticmethod
    def fallback_parse(text: str, today: str) -> ParsedExpense:
        match = _FIRST_AMOUNT.search(text)
        return ParsedExpense(
            amount=float(match.group(1)) if match else None,
            description=text,
            category=None,
            date=today,
        )

    # Insights

    def generate_insights(
        self, metrics: InsightMetrics, locale: str = "en"
    ) -> InsightReport:
        response = self._complete(
            "generate_insights", self._insight_prompt(metrics, locale), 0.4
        )
        if response is not None:
            try:
                parsed = json.loads(strip_code_fence(response))
            except json.JSONDecodeError:
                parsed = None
            if isinstance(parsed, dict):
                return InsightReport(
                    summary=str(parsed.get("summary") or "No summary available"),
                    trends=_string_list(parsed.get("trends")),
                    recommendations=_string_list(parsed.get("recommendations")),
                    alerts=_string_list(parsed.get("alerts")),
                )
            logger.warning("ai_fallback: operation=generate_insights reason=malformed")
        return self.fallback_insights(metrics)

    @staticmethod
    def _insight_prompt(metrics: InsightMetrics, locale: str) -> str:
        top = ", ".join(
            f"{row.category}: ${_money(row.amount):.2f}"
            for row in metrics.top_categories()
        )
        breakdown = "\n".join(
            f"- {row.category}: ${_money(row.amount):.2f} ({row.count} transactions)"
            for row in metrics.expenses_by_category
        )
        trend = "\n".join(
            f"- {month}: ${_money(amount):.2f}"
            for month, amount in list(metrics.monthly_trend)[-6:]
        )
        return f"""{_localized(INSIGHT_INSTRUCTIONS, locale)} Analyze spending patterns and generate personalized financial insights.

Financial Data:
- Total Income: ${_money(metrics.total_income):.2f}
- Total Expenses: ${_money(metrics.total_expenses):.2f}
- Savings Rate: {metrics.savings_rate:.1f}%
- Current Month Expenses: ${_money(metrics.current_month_total):.2f}
- Previous Month Expenses: ${_money(metrics.previous_month_total):.2f}
- Month-over-Month Change: {metrics.monthly_change:.1f}%
- Top Spending Categories: {top}

Category Breakdown:
{breakdown}

Monthly Trend (last 6 months):
{trend}

Generate insights in JSON format with:
1. summary: A brief 2-3 sentence overview of their financial health
2. trends: Array of 2-3 observed spending trends or patterns
3. recommendations: Array of 3-4 actionable money-saving tips specific to their spending
4. alerts: Array of 1-2 warnings about unusual spending or areas of concern (empty array if none)

Rules:
- Be specific and use actual numbers from the data
- Keep insights concise and actionable
- Be encouraging but realistic
- Focus on practical advice
- Return ONLY valid JSON, nothing else

Response format (JSON only):
{{
  "summary": "Brief overview...",
  "trends": ["Trend 1...", "Trend 2..."],
  "recommendations": ["Tip 1...", "Tip 2...", "Tip 3..."],
  "alerts": ["Alert 1..." or empty array]
}}"""

    @staticmethod
    def fallback_insights(metrics: InsightMetrics) -> InsightReport:
        change = metrics.monthly_change
        if change > 0:
            movement = f"Your spending increased by {change:.1f}% this month."
        else:
            movement = f"Your spending decreased by {abs(change):.1f}% this month."
        top = metrics.top_categories(1)
        top_name = top[0].category if top else "Unknown"
        return InsightReport(
            summary=(
                f"You've spent ${_money(metrics.total_expenses):.2f} with a savings "
                f"rate of {metrics.savings_rate:.1f}%. {movement}"
            ),
            trends=[
                f"Top spending category is {top_name}",
                "Significant increase in spending this month"
                if change > VOLATILE_CHANGE_PCT
                else "Spending is relatively stable",
            ],
            recommendations=list(FALLBACK_RECOMMENDATIONS),
            alerts=(
                ["Spending increased significantly this month - review for unusual expenses"]
                if change > ALERT_CHANGE_PCT
                else []
            ),
        )
