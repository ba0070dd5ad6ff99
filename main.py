import logging
from datetime import date
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request, Response
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

import rate_limit
from database import get_db, init_db
from models import ExpenseCategory, IncomeCategory, InvoiceStatus
from periods import resolve_period
from rate_limit import RATE_LIMITS, RateLimitResult, rate_limit_headers
from schemas import (
    CategorizeIn,
    ExpenseIn,
    IncomeIn,
    InsightsIn,
    InvoiceIn,
    ParseExpenseIn,
)
from services import (
    DEFAULT_USER_ID,
    ExpenseService,
    IncomeService,
    InsightsService,
    InvoiceService,
    LedgerFilters,
    SummaryService,
    serialize_expense,
    serialize_income,
    serialize_invoice,
)
from text_understanding import TextUnderstandingService

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def _load_app_version() -> str:
    try:
        import tomllib
    except Exception:
        return "unknown"
    try:
        with open("pyproject.toml", "rb") as f:
            data = tomllib.load(f)
        return str(data.get("project", {}).get("version", "unknown"))
    except Exception:
        return "unknown"


APP_VERSION = _load_app_version()

app = FastAPI(title="Finance Insights", version=APP_VERSION)


class RateLimitExceeded(Exception):
    def __init__(self, result: RateLimitResult, headers: dict[str, str]) -> None:
        super().__init__("rate limit exceeded")
        self.result = result
        self.headers = headers


@app.exception_handler(RateLimitExceeded)
def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded):
    return JSONResponse(
        status_code=429,
        content={
            "error": "Too many requests. Please try again later.",
            "allowed": False,
            "reset_in_seconds": exc.result.reset_in_seconds,
        },
        headers=exc.headers,
    )


def current_user_id(x_user_id: Optional[str] = Header(default=None)) -> int:
    if not x_user_id:
        return DEFAULT_USER_ID
    try:
        return int(x_user_id)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid X-User-Id header") from exc


def governed(endpoint: str, limit: str):
    config = RATE_LIMITS[limit]

    def check_rate_limit(
        response: Response, user_id: int = Depends(current_user_id)
    ) -> RateLimitResult:
        result = rate_limit.governor.check(str(user_id), endpoint, config)
        headers = rate_limit_headers(result, config)
        if not result.allowed:
            logger.info(
                f"rate_limited: user={user_id} endpoint={endpoint} "
                f"reset_in={result.reset_in_seconds}"
            )
            raise RateLimitExceeded(result, headers)
        response.headers.update(headers)
        return result

    return check_rate_limit


def get_text_service() -> TextUnderstandingService:
    return TextUnderstandingService()


def filters_from_request(request: Request) -> LedgerFilters:
    params = request.query_params
    start = end = None
    try:
        if params.get("start_date") and params.get("end_date"):
            start = date.fromisoformat(params["start_date"])
            end = date.fromisoformat(params["end_date"])
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    status = None
    if params.get("status"):
        try:
            status = InvoiceStatus(params["status"])
        except ValueError:
            status = None
    recurring = None
    if params.get("recurring") is not None:
        recurring = params["recurring"].lower() == "true"
    return LedgerFilters(
        category=params.get("category") or None,
        status=status,
        start=start,
        end=end,
        recurring=recurring,
        search=params.get("search") or None,
    )


def pagination_from_request(request: Request) -> tuple[int, int]:
    try:
        page = int(request.query_params.get("page", "1"))
        limit = int(request.query_params.get("limit", "10"))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return max(page, 1), min(max(limit, 1), 100)


def paginated(key: str, items: list, total: int, page: int, limit: int) -> dict:
    return {
        key: items,
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "pages": -(-total // limit),
        },
    }


@app.on_event("startup")
def startup_event():
    init_db()
    service = get_text_service()
    if service.is_available():
        logger.info(f"ai_provider: {service.provider_name}")
    else:
        logger.info("ai_provider: not configured, fallbacks only")


@app.get("/api/summary")
def api_summary(
    response: Response,
    period: Optional[str] = None,
    year: Optional[str] = None,
    month: Optional[str] = None,
    user_id: int = Depends(current_user_id),
    _limit: RateLimitResult = Depends(governed("summary", "heavy")),
    db: Session = Depends(get_db),
):
    resolved = resolve_period(period, year, month)
    response.headers["Cache-Control"] = "private, max-age=60"
    return SummaryService(db, user_id).summary(resolved)


@app.post("/api/ai/categorize")
def api_ai_categorize(
    payload: CategorizeIn,
    _limit: RateLimitResult = Depends(governed("ai-categorize", "ai")),
    text_service: TextUnderstandingService = Depends(get_text_service),
):
    return {"category": text_service.categorize(payload.description, payload.locale)}


@app.post("/api/ai/parse-expense")
def api_ai_parse_expense(
    payload: ParseExpenseIn,
    _limit: RateLimitResult = Depends(governed("ai-parse", "ai")),
    text_service: TextUnderstandingService = Depends(get_text_service),
):
    return text_service.parse_from_text(payload.text, payload.locale).as_dict()


@app.post("/api/ai/insights")
def api_ai_insights(
    payload: Optional[InsightsIn] = None,
    user_id: int = Depends(current_user_id),
    _limit: RateLimitResult = Depends(governed("ai-insights", "ai")),
    text_service: TextUnderstandingService = Depends(get_text_service),
    db: Session = Depends(get_db),
):
    locale = payload.locale if payload else "en"
    report = InsightsService(db, text_service, user_id).generate(locale)
    return report.as_dict()


@app.get("/api/ai/status")
def api_ai_status(
    text_service: TextUnderstandingService = Depends(get_text_service),
):
    return {
        "available": text_service.is_available(),
        "provider": text_service.provider_name,
    }


@app.get("/api/categories")
def api_categories():
    return {
        "expense": [c.value for c in ExpenseCategory],
        "income": [c.value for c in IncomeCategory],
        "invoice_status": [s.value for s in InvoiceStatus],
    }


@app.get("/api/expenses")
def api_list_expenses(
    request: Request,
    user_id: int = Depends(current_user_id),
    _limit: RateLimitResult = Depends(governed("expenses", "standard")),
    db: Session = Depends(get_db),
):
    page, limit = pagination_from_request(request)
    items, total = ExpenseService(db, user_id).list(
        filters_from_request(request), limit=limit, offset=(page - 1) * limit
    )
    return paginated(
        "expenses", [serialize_expense(e) for e in items], total, page, limit
    )


@app.post("/api/expenses", status_code=201)
def api_create_expense(
    payload: ExpenseIn,
    user_id: int = Depends(current_user_id),
    _limit: RateLimitResult = Depends(governed("expenses", "standard")),
    db: Session = Depends(get_db),
):
    return serialize_expense(ExpenseService(db, user_id).create(payload))


@app.get("/api/expenses/{expense_id}")
def api_get_expense(
    expense_id: int,
    user_id: int = Depends(current_user_id),
    _limit: RateLimitResult = Depends(governed("expenses", "standard")),
    db: Session = Depends(get_db),
):
    try:
        return serialize_expense(ExpenseService(db, user_id).get(expense_id))
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.put("/api/expenses/{expense_id}")
def api_update_expense(
    expense_id: int,
    payload: ExpenseIn,
    user_id: int = Depends(current_user_id),
    _limit: RateLimitResult = Depends(governed("expenses", "standard")),
    db: Session = Depends(get_db),
):
    try:
        expense = ExpenseService(db, user_id).update(expense_id, payload)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return serialize_expense(expense)


@app.delete("/api/expenses/{expense_id}", status_code=204)
def api_delete_expense(
    expense_id: int,
    user_id: int = Depends(current_user_id),
    _limit: RateLimitResult = Depends(governed("expenses", "standard")),
    db: Session = Depends(get_db),
):
    try:
        ExpenseService(db, user_id).delete(expense_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.get("/api/incomes")
def api_list_incomes(
    request: Request,
    user_id: int = Depends(current_user_id),
    _limit: RateLimitResult = Depends(governed("incomes", "standard")),
    db: Session = Depends(get_db),
):
    page, limit = pagination_from_request(request)
    items, total = IncomeService(db, user_id).list(
        filters_from_request(request), limit=limit, offset=(page - 1) * limit
    )
    return paginated(
        "incomes", [serialize_income(i) for i in items], total, page, limit
    )


@app.post("/api/incomes", status_code=201)
def api_create_income(
    payload: IncomeIn,
    user_id: int = Depends(current_user_id),
    _limit: RateLimitResult = Depends(governed("incomes", "standard")),
    db: Session = Depends(get_db),
):
    return serialize_income(IncomeService(db, user_id).create(payload))


@app.get("/api/incomes/{income_id}")
def api_get_income(
    income_id: int,
    user_id: int = Depends(current_user_id),
    _limit: RateLimitResult = Depends(governed("incomes", "standard")),
    db: Session = Depends(get_db),
):
    try:
        return serialize_income(IncomeService(db, user_id).get(income_id))
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.put("/api/incomes/{income_id}")
def api_update_income(
    income_id: int,
    payload: IncomeIn,
    user_id: int = Depends(current_user_id),
    _limit: RateLimitResult = Depends(governed("incomes", "standard")),
    db: Session = Depends(get_db),
):
    try:
        income = IncomeService(db, user_id).update(income_id, payload)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return serialize_income(income)


@app.delete("/api/incomes/{income_id}", status_code=204)
def api_delete_income(
    income_id: int,
    user_id: int = Depends(current_user_id),
    _limit: RateLimitResult = Depends(governed("incomes", "standard")),
    db: Session = Depends(get_db),
):
    try:
        IncomeService(db, user_id).delete(income_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.get("/api/invoices")
def api_list_invoices(
    request: Request,
    user_id: int = Depends(current_user_id),
    _limit: RateLimitResult = Depends(governed("invoices", "standard")),
    db: Session = Depends(get_db),
):
    page, limit = pagination_from_request(request)
    items, total = InvoiceService(db, user_id).list(
        filters_from_request(request), limit=limit, offset=(page - 1) * limit
    )
    return paginated(
        "invoices", [serialize_invoice(i) for i in items], total, page, limit
    )


@app.post("/api/invoices", status_code=201)
def api_create_invoice(
    payload: InvoiceIn,
    user_id: int = Depends(current_user_id),
    _limit: RateLimitResult = Depends(governed("invoices", "standard")),
    db: Session = Depends(get_db),
):
    try:
        invoice = InvoiceService(db, user_id).create(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return serialize_invoice(invoice)


@app.get("/api/invoices/{invoice_id}")
def api_get_invoice(
    invoice_id: int,
    user_id: int = Depends(current_user_id),
    _limit: RateLimitResult = Depends(governed("invoices", "standard")),
    db: Session = Depends(get_db),
):
    try:
        return serialize_invoice(InvoiceService(db, user_id).get(invoice_id))
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.put("/api/invoices/{invoice_id}")
def api_update_invoice(
    invoice_id: int,
    payload: InvoiceIn,
    user_id: int = Depends(current_user_id),
    _limit: RateLimitResult = Depends(governed("invoices", "standard")),
    db: Session = Depends(get_db),
):
    service = InvoiceService(db, user_id)
    try:
        service.get(invoice_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    try:
        invoice = service.update(invoice_id, payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return serialize_invoice(invoice)


@app.delete("/api/invoices/{invoice_id}", status_code=204)
def api_delete_invoice(
    invoice_id: int,
    user_id: int = Depends(current_user_id),
    _limit: RateLimitResult = Depends(governed("invoices", "standard")),
    db: Session = Depends(get_db),
):
    try:
        InvoiceService(db, user_id).delete(invoice_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
