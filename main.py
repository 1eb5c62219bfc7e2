import logging
import math
import secrets
from datetime import date, datetime
from typing import TYPE_CHECKING, Optional

import stripe
from fastapi import Depends, FastAPI, HTTPException, Query, Request, Response
from fastapi.responses import JSONResponse, StreamingResponse
from fastapi.templating import Jinja2Templates
from sqlalchemy.orm import Session

from aggregation import (
    category_totals,
    compare_months,
    current_month_subset,
    group_by_month,
    group_expenses_by_category,
    high_expense_outliers,
    previous_month_subset,
    totals,
)
from billing import BillingService, CheckoutGateway, WebhookSignatureError, parse_webhook
from config import get_settings
from currency import (
    currency_locale,
    currency_name,
    currency_symbol,
    default_currency,
    format_currency,
)
from database import get_db
from goals import days_remaining, goal_progress, is_near_deadline, is_overdue
from guest import GuestStore, migrate_guest_transactions
from models import CurrencyCode, Language, Plan, Theme, TransactionType, User
from periods import local_today, month_period
from plans import Feature, get_transaction_limit, is_feature_available, locked_features
from scheduler import SchedulerManager
from schemas import (
    AddMoneyIn,
    GoalIn,
    GoalOut,
    GoalUpdate,
    LoginIn,
    LoginVerifyIn,
    PlanOverrideIn,
    Preferences,
    PreferencesUpdate,
    SignupIn,
    TransactionIn,
    TransactionUpdate,
    UserOut,
)
from services import (
    GoalService,
    ReportService,
    TransactionFilters,
    TransactionService,
    UserService,
)
from sources import TransactionLimitReached, TransactionSource, select_transaction_source
from tokens import (
    dump_guest_storage,
    issue_identity_token,
    issue_login_token,
    load_guest_storage,
    read_identity_token,
    read_login_token,
)

if TYPE_CHECKING:  # pragma: no cover
    from weasyprint import HTML, CSS  # noqa: F401
    from weasyprint.text.fonts import FontConfiguration  # noqa: F401

IDENTITY_COOKIE = "finance_session"
GUEST_COOKIE = "finance_guest"

app = FastAPI(title="Personal Finance")
templates = Jinja2Templates(directory="templates")


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

templates.env.filters["currency"] = format_currency
templates.env.globals["currency_symbol"] = currency_symbol


scheduler_manager = SchedulerManager()


@app.on_event("startup")
def startup_event():
    scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


def current_user_id(request: Request) -> Optional[str]:
    token = request.cookies.get(IDENTITY_COOKIE)
    auth = request.headers.get("Authorization", "")
    if not token and auth.lower().startswith("bearer "):
        token = auth[7:].strip()
    return read_identity_token(token)


def guest_store_from_request(request: Request) -> GuestStore:
    return GuestStore(load_guest_storage(request.cookies.get(GUEST_COOKIE)))


def save_guest_store(response: Response, store: GuestStore) -> None:
    if store.storage:
        response.set_cookie(
            GUEST_COOKIE,
            dump_guest_storage(store.storage),
            httponly=True,
            samesite="lax",
        )
    else:
        response.delete_cookie(GUEST_COOKIE)


def set_identity_cookie(response: Response, token: str) -> None:
    settings = get_settings()
    response.set_cookie(
        IDENTITY_COOKIE,
        token,
        max_age=settings.session_max_age_hours * 3600,
        httponly=True,
        samesite="lax",
    )


def require_user(request: Request, db: Session) -> User:
    user_id = current_user_id(request)
    if not user_id:
        if guest_store_from_request(request).is_enabled():
            raise HTTPException(
                status_code=403, detail="Not available in guest mode; create an account"
            )
        raise HTTPException(status_code=401, detail="Not authenticated")
    try:
        return UserService(db).get(user_id)
    except ValueError as exc:
        raise HTTPException(status_code=401, detail="Not authenticated") from exc


def require_source(
    request: Request, db: Session
) -> tuple[TransactionSource, GuestStore]:
    store = guest_store_from_request(request)
    user_id = current_user_id(request)
    if user_id:
        require_user(request, db)
    source = select_transaction_source(db, user_id, store)
    if source is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return source, store


def _enum_setting(enum_cls, value: str, fallback):
    try:
        return enum_cls(value)
    except ValueError:
        logging.warning(
            f"setting_invalid: {enum_cls.__name__}={value!r} using={fallback.value}"
        )
        return fallback


def get_preferences(request: Request, db: Session) -> Preferences:
    user_id = current_user_id(request)
    if user_id:
        try:
            return UserService(db).get_preferences(user_id)
        except ValueError:
            pass
    settings = get_settings()
    return Preferences(
        theme=_enum_setting(Theme, settings.default_theme, Theme.light),
        language=_enum_setting(Language, settings.default_language, Language.pt),
        currency=default_currency(),
    )


def plan_for(source: TransactionSource, db: Session, request: Request) -> Plan:
    if source.is_guest:
        return Plan.free
    return UserService(db).get_plan(current_user_id(request))


def limit_payload(source: TransactionSource) -> dict[str, object]:
    check = source.can_add()
    return {
        "allowed": check.allowed,
        "reason": check.reason,
        "count": source.count(),
        "remaining": source.remaining(),
        "is_guest": source.is_guest,
    }


def goal_payload(goal, transactions, today: date) -> dict[str, object]:
    return {
        "goal": GoalOut.model_validate(goal),
        "progress": goal_progress(goal, transactions, today),
        "days_remaining": days_remaining(goal.deadline, today),
        "is_overdue": is_overdue(goal.deadline, today),
        "is_near_deadline": is_near_deadline(goal.deadline, today=today),
    }


@app.post("/api/auth/signup", status_code=201)
def signup(
    data: SignupIn, request: Request, response: Response, db: Session = Depends(get_db)
):
    users = UserService(db)
    try:
        user = users.create(data, get_preferences(request, db))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    store = guest_store_from_request(request)
    migrated = migrate_guest_transactions(store, TransactionService(db, user.id).create)
    save_guest_store(response, store)

    token = issue_identity_token(user.id)
    set_identity_cookie(response, token)
    return {"user": UserOut.model_validate(user), "migrated": migrated, "token": token}


@app.post("/api/auth/logout", status_code=204)
def logout():
    response = Response(status_code=204)
    response.delete_cookie(IDENTITY_COOKIE)
    return response


def send_login_link(email: str, link: str) -> None:
    # Stand-in for the identity provider's mailer.
    logging.info(f"login_link_issued: email={email}")


@app.post("/api/auth/login", status_code=202)
def request_login(data: LoginIn, db: Session = Depends(get_db)):
    user = UserService(db).find_by_email(data.email)
    if user:
        token = issue_login_token(user.id)
        app_url = get_settings().app_url.rstrip("/")
        send_login_link(user.email, f"{app_url}/login?token={token}")
    else:
        logging.info("login_link_skipped: unknown email")
    return {"sent": True}


@app.post("/api/auth/login/verify")
def verify_login(
    data: LoginVerifyIn, response: Response, db: Session = Depends(get_db)
):
    user_id = read_login_token(data.token)
    try:
        user = UserService(db).get(user_id or "")
    except ValueError as exc:
        raise HTTPException(
            status_code=400, detail="Login link is invalid or expired"
        ) from exc

    token = issue_identity_token(user.id)
    set_identity_cookie(response, token)
    return {"user": UserOut.model_validate(user), "token": token}


@app.post("/api/guest/enable")
def enable_guest(request: Request, response: Response):
    if current_user_id(request):
        raise HTTPException(status_code=400, detail="Already signed in")
    store = guest_store_from_request(request)
    store.enable()
    save_guest_store(response, store)
    return {"guest_mode": True, "count": store.count()}


@app.post("/api/guest/disable")
def disable_guest(request: Request, response: Response):
    store = guest_store_from_request(request)
    store.disable()
    save_guest_store(response, store)
    return {"guest_mode": False}


@app.get("/api/transactions")
def list_transactions(
    request: Request,
    type: Optional[TransactionType] = None,
    start: Optional[date] = None,
    end: Optional[date] = None,
    db: Session = Depends(get_db),
):
    source, _ = require_source(request, db)
    return source.list(TransactionFilters(type=type, start=start, end=end))


@app.get("/api/transactions/month/{year}/{month}")
def list_month_transactions(
    year: int, month: int, request: Request, db: Session = Depends(get_db)
):
    if not 1 <= month <= 12:
        raise HTTPException(status_code=400, detail="Month must be between 1 and 12")
    source, _ = require_source(request, db)
    return source.list_by_month(year, month)


@app.get("/api/transactions/limit")
def transaction_limit(request: Request, db: Session = Depends(get_db)):
    source, _ = require_source(request, db)
    return limit_payload(source)


@app.post("/api/transactions", status_code=201)
def create_transaction(
    data: TransactionIn,
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
):
    source, store = require_source(request, db)
    check = source.can_add()
    if not check.allowed:
        return JSONResponse(
            status_code=403, content={"allowed": False, "reason": check.reason}
        )
    try:
        txn = source.add(data)
    except TransactionLimitReached as exc:
        return JSONResponse(status_code=403, content={"allowed": False, "reason": str(exc)})
    if source.is_guest:
        save_guest_store(response, store)
    return txn


@app.put("/api/transactions/{transaction_id}")
def update_transaction(
    transaction_id: str,
    data: TransactionUpdate,
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
):
    source, store = require_source(request, db)
    try:
        txn = source.update(transaction_id, data)
    except ValueError as exc:
        status = 404 if "not found" in str(exc) else 400
        raise HTTPException(status_code=status, detail=str(exc)) from exc
    if source.is_guest:
        save_guest_store(response, store)
    return txn


@app.delete("/api/transactions/{transaction_id}", status_code=204)
def delete_transaction(
    transaction_id: str, request: Request, db: Session = Depends(get_db)
):
    source, store = require_source(request, db)
    try:
        source.remove(transaction_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    response = Response(status_code=204)
    if source.is_guest:
        save_guest_store(response, store)
    return response


@app.get("/api/goals")
def list_goals(request: Request, db: Session = Depends(get_db)):
    user = require_user(request, db)
    transactions = TransactionService(db, user.id).list()
    today = local_today()
    return [
        goal_payload(goal, transactions, today)
        for goal in GoalService(db, user.id).list()
    ]


@app.post("/api/goals", status_code=201)
def create_goal(data: GoalIn, request: Request, db: Session = Depends(get_db)):
    user = require_user(request, db)
    goal = GoalService(db, user.id).create(data)
    return GoalOut.model_validate(goal)


@app.put("/api/goals/{goal_id}")
def update_goal(
    goal_id: str, data: GoalUpdate, request: Request, db: Session = Depends(get_db)
):
    user = require_user(request, db)
    try:
        goal = GoalService(db, user.id).update(goal_id, data)
    except ValueError as exc:
        status = 404 if "not found" in str(exc) else 400
        raise HTTPException(status_code=status, detail=str(exc)) from exc
    return GoalOut.model_validate(goal)


@app.post("/api/goals/{goal_id}/add-money")
def add_money_to_goal(
    goal_id: str, data: AddMoneyIn, request: Request, db: Session = Depends(get_db)
):
    user = require_user(request, db)
    try:
        goal = GoalService(db, user.id).add_money(goal_id, data)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    transactions = TransactionService(db, user.id).list()
    return goal_payload(goal, transactions, local_today())


@app.delete("/api/goals/{goal_id}", status_code=204)
def delete_goal(goal_id: str, request: Request, db: Session = Depends(get_db)):
    user = require_user(request, db)
    try:
        GoalService(db, user.id).delete(goal_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return Response(status_code=204)


@app.get("/api/dashboard")
def dashboard(
    request: Request,
    year: Optional[int] = Query(default=None, ge=1970, le=3000),
    month: Optional[int] = Query(default=None, ge=1, le=12),
    db: Session = Depends(get_db),
):
    if (year is None) != (month is None):
        raise HTTPException(
            status_code=400, detail="Pass both year and month, or neither"
        )
    source, _ = require_source(request, db)
    preferences = get_preferences(request, db)
    today = local_today()
    reference = date(year, month, 1) if year is not None else today
    plan = plan_for(source, db, request)

    transactions = source.list()
    monthly = current_month_subset(transactions, reference)
    previous = previous_month_subset(transactions, reference)
    month_totals = totals(monthly)

    payload: dict[str, object] = {
        "period": month_period(reference.year, reference.month),
        "plan": plan,
        "preferences": preferences,
        "totals": month_totals,
        "formatted_totals": {
            "income": format_currency(month_totals.income, preferences.currency),
            "expense": format_currency(month_totals.expense, preferences.currency),
            "balance": format_currency(month_totals.balance, preferences.currency),
        },
        "expenses_by_category": group_expenses_by_category(monthly),
        "monthly_series": group_by_month(transactions),
        "transaction_limit": limit_payload(source),
        "locked": locked_features(plan),
        "monthly_comparison": None,
        "category_totals": None,
        "high_expenses": None,
        "goals": [],
    }
    if is_feature_available(plan, Feature.monthly_comparison):
        payload["monthly_comparison"] = compare_months(monthly, previous)
    if is_feature_available(plan, Feature.category_totals):
        payload["category_totals"] = category_totals(monthly)
    if is_feature_available(plan, Feature.high_expenses_alert):
        payload["high_expenses"] = high_expense_outliers(monthly)
    if not source.is_guest:
        owner_id = current_user_id(request)
        payload["goals"] = [
            goal_payload(goal, transactions, today)
            for goal in GoalService(db, owner_id).list()
        ]
    return payload


@app.get("/api/currencies")
def list_currencies():
    return [
        {
            "code": code.value,
            "symbol": currency_symbol(code),
            "name": currency_name(code),
            "locale": currency_locale(code),
        }
        for code in CurrencyCode
    ]


@app.get("/api/me")
def me(request: Request, db: Session = Depends(get_db)):
    user = require_user(request, db)
    limit = get_transaction_limit(user.plan)
    return {
        "user": UserOut.model_validate(user),
        "transaction_limit": None if math.isinf(limit) else int(limit),
        "locked": locked_features(user.plan),
    }


@app.put("/api/me/preferences")
def update_preferences(
    data: PreferencesUpdate, request: Request, db: Session = Depends(get_db)
):
    user = require_user(request, db)
    return UserService(db).update_preferences(user.id, data)


@app.delete("/api/me", status_code=204)
def delete_account(request: Request, db: Session = Depends(get_db)):
    user = require_user(request, db)
    UserService(db).delete_account(user.id)
    response = Response(status_code=204)
    response.delete_cookie(IDENTITY_COOKIE)
    return response


@app.post("/api/billing/checkout")
def create_checkout(request: Request, db: Session = Depends(get_db)):
    user = require_user(request, db)
    try:
        checkout = CheckoutGateway().create_session(user.id, user.email)
    except ValueError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    except stripe.StripeError as exc:
        logging.exception("Error creating checkout session")
        raise HTTPException(status_code=502, detail="Payment provider error") from exc
    return {"session_id": checkout.session_id, "url": checkout.url}


async def raw_body(request: Request) -> bytes:
    return await request.body()


@app.post("/api/billing/webhook")
def billing_webhook(
    request: Request,
    payload: bytes = Depends(raw_body),
    db: Session = Depends(get_db),
):
    try:
        event = parse_webhook(payload, request.headers.get("stripe-signature"))
    except WebhookSignatureError as exc:
        logging.warning(f"billing_webhook_rejected: error={exc}")
        raise HTTPException(status_code=400, detail=f"Webhook Error: {exc}") from exc
    status = BillingService(db).handle_event(event)
    return {"received": True, "status": status.value}


@app.post("/api/admin/users/{user_id}/plan")
def override_plan(
    user_id: str, data: PlanOverrideIn, request: Request, db: Session = Depends(get_db)
):
    settings = get_settings()
    if not settings.admin_token:
        raise HTTPException(status_code=404, detail="Not found")
    supplied = request.headers.get("X-Admin-Token", "")
    if not secrets.compare_digest(supplied, settings.admin_token):
        raise HTTPException(status_code=403, detail="Forbidden")
    try:
        user = UserService(db).set_plan(user_id, data.plan, data.subscription_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return UserOut.model_validate(user)


@app.get("/api/reports/{year}/{month}.pdf")
def monthly_report_pdf(
    year: int, month: int, request: Request, db: Session = Depends(get_db)
):
    user = require_user(request, db)
    if not 1 <= month <= 12:
        raise HTTPException(status_code=400, detail="Month must be between 1 and 12")
    if not is_feature_available(user.plan, Feature.export):
        raise HTTPException(status_code=403, detail="PDF export requires Premium")

    try:
        from weasyprint import CSS, HTML
        from weasyprint.text.fonts import FontConfiguration
    except Exception as exc:
        raise HTTPException(
            status_code=500,
            detail="PDF export requires WeasyPrint system dependencies; install them for your OS and retry.",
        ) from exc

    try:
        start_time = datetime.now()
        data = ReportService(db, user.id).monthly_report(year, month)
        data["generated_at"] = datetime.now()
        data["app_version"] = APP_VERSION

        font_config = FontConfiguration()
        html = templates.env.get_template("report.html").render(**data)
        css = CSS(
            string="""
                @page {
                    size: A4;
                    margin: 20mm 20mm 20mm 20mm;
                }
            """,
            font_config=font_config,
        )
        pdf_bytes = HTML(string=html, base_url=str(request.base_url)).write_pdf(
            stylesheets=[css], font_config=font_config
        )
        duration = (datetime.now() - start_time).total_seconds()
        logging.info(
            f"report_generated: owner={user.id} month={year}-{month:02d} "
            f"pdf_size_bytes={len(pdf_bytes)} duration={duration:.2f}s"
        )

        filename = f"report_{year}_{month:02d}.pdf"
        return StreamingResponse(
            iter([pdf_bytes]),
            media_type="application/pdf",
            headers={
                "Content-Disposition": f'attachment; filename="{filename}"',
                "Content-Length": str(len(pdf_bytes)),
            },
        )
    except Exception as exc:
        logging.exception("Error generating PDF report")
        raise HTTPException(status_code=500, detail=str(exc)) from exc


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
