import logging
from datetime import date
from typing import Optional
from urllib.parse import quote

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import PlainTextResponse, RedirectResponse, StreamingResponse
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from auth import read_session_cookie, sign_session_id
from config import get_settings
from csrf import generate_csrf_token, validate_csrf_token
from csv_utils import parse_amount, parse_date
from database import SessionLocal, check_connection
from models import TransactionType, User
from scheduler import SchedulerManager
from schemas import TransactionIn, TransactionOut, UserIn, UserOut
from services import (
    CSVService,
    Dashboard,
    DashboardService,
    NothingToExport,
    SessionService,
    TransactionFilters,
    TransactionNotFound,
    TransactionService,
    UserService,
    resolve_filters,
)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(title="FinTrack")


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

TRUTHY = {"1", "true", "yes", "on"}


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_today() -> date:
    return date.today()


scheduler_manager = SchedulerManager()


@app.on_event("startup")
def startup_event():
    check_connection()
    scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


class LoginRequired(Exception):
    pass


def redirect_to(url: str) -> RedirectResponse:
    return RedirectResponse(url=url, status_code=303)


def redirect_with_error(path: str, message: str) -> RedirectResponse:
    return redirect_to(f"{path}?error={quote(message)}")


@app.exception_handler(LoginRequired)
async def login_required_handler(request: Request, exc: LoginRequired):
    return redirect_with_error("/login", "Please log in to view the dashboard.")


@app.exception_handler(SQLAlchemyError)
async def store_error_handler(request: Request, exc: SQLAlchemyError):
    logger.error(f"store_error: path={request.url.path}", exc_info=exc)
    return PlainTextResponse("Server Error", status_code=500)


def error_message(exc: ValueError) -> str:
    if isinstance(exc, ValidationError):
        first = exc.errors()[0]
        field = ".".join(str(part) for part in first.get("loc", ()))
        return f"{field}: {first.get('msg')}" if field else str(first.get("msg"))
    return str(exc)


def session_id_from_request(request: Request) -> Optional[str]:
    return read_session_cookie(request.cookies.get(get_settings().session_cookie))


def current_user(request: Request, db: Session = Depends(get_db)) -> User:
    session_id = session_id_from_request(request)
    user = SessionService(db).resolve(session_id) if session_id else None
    if user is None:
        raise LoginRequired()
    return user


def start_session(db: Session, user: User) -> RedirectResponse:
    settings = get_settings()
    record = SessionService(db).create(user.id)
    response = redirect_to("/")
    response.set_cookie(
        settings.session_cookie,
        sign_session_id(record.id),
        max_age=settings.session_max_age_hours * 3600,
        httponly=True,
        samesite="lax",
    )
    return response


def filters_from_request(request: Request, user: User) -> TransactionFilters:
    return resolve_filters(
        user.id,
        request.query_params.get("month"),
        request.query_params.get("category"),
    )


def transaction_payload_from_form(form) -> TransactionIn:
    required = ("type", "category", "amount", "date")
    if any(not str(form.get(name) or "").strip() for name in required):
        raise ValueError("Missing required fields.")
    return TransactionIn(
        type=TransactionType(str(form["type"]).strip()),
        category=str(form["category"]).strip(),
        amount_cents=parse_amount(str(form["amount"])),
        note=str(form.get("note") or "").strip(),
        date=parse_date(str(form["date"])),
    )


async def checked_form(request: Request, user: User):
    form = await request.form()
    if not validate_csrf_token(str(form.get("csrf_token", "")), user.id):
        raise HTTPException(status_code=400, detail="Invalid CSRF token")
    return form


def dashboard_payload(
    request: Request, user: User, dashboard: Dashboard
) -> dict[str, object]:
    errors = list(dashboard.errors)
    if request.query_params.get("error"):
        errors.insert(0, request.query_params["error"])
    edit = dashboard.edit_transaction
    return {
        "current_user": UserOut.model_validate(user),
        "transactions": [
            TransactionOut.model_validate(txn) for txn in dashboard.transactions
        ],
        "summary": dashboard.summary,
        "monthly_breakdown": dashboard.monthly_breakdown,
        "categories": dashboard.categories,
        "filters": dashboard.filters.as_query(),
        "edit_transaction": TransactionOut.model_validate(edit) if edit else None,
        "error": errors[0] if errors else None,
        "csrf_token": generate_csrf_token(user.id),
    }


@app.get("/health")
def health():
    return {"status": "ok", "version": APP_VERSION}


@app.get("/register")
def register_page(request: Request):
    return {"error": request.query_params.get("error")}


@app.post("/register")
async def register(request: Request, db: Session = Depends(get_db)):
    form = await request.form()
    try:
        data = UserIn(
            name=str(form.get("name") or ""),
            email=str(form.get("email") or ""),
            password=str(form.get("password") or ""),
        )
        user = UserService(db).register(data)
    except ValueError as exc:
        return redirect_with_error("/register", error_message(exc))
    return start_session(db, user)


@app.get("/login")
def login_page(request: Request):
    return {"error": request.query_params.get("error")}


@app.post("/login")
async def login(request: Request, db: Session = Depends(get_db)):
    form = await request.form()
    try:
        user = UserService(db).authenticate(
            str(form.get("email") or ""), str(form.get("password") or "")
        )
    except ValueError as exc:
        return redirect_with_error("/login", str(exc))
    return start_session(db, user)


@app.get("/logout")
def logout(request: Request, db: Session = Depends(get_db)):
    session_id = session_id_from_request(request)
    if session_id:
        SessionService(db).destroy(session_id)
    response = redirect_with_error("/login", "Successfully logged out.")
    response.delete_cookie(get_settings().session_cookie)
    return response


@app.get("/")
def dashboard(
    request: Request,
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
    today: date = Depends(get_today),
):
    filters = filters_from_request(request, user)
    fill_gaps = (request.query_params.get("fill_gaps") or "").lower() in TRUTHY
    data = DashboardService(db, user.id).build(
        filters, today=today, fill_gaps=fill_gaps
    )
    return dashboard_payload(request, user, data)


@app.post("/add")
async def add_transaction(
    request: Request,
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    form = await checked_form(request, user)
    try:
        data = transaction_payload_from_form(form)
        TransactionService(db, user.id).create(data)
    except ValueError as exc:
        return redirect_with_error("/", error_message(exc))
    return redirect_to("/")


@app.get("/edit/{transaction_id}")
def edit_transaction_page(
    transaction_id: int,
    request: Request,
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    try:
        data = DashboardService(db, user.id).for_edit(transaction_id)
    except TransactionNotFound as exc:
        raise HTTPException(
            status_code=404, detail="Transaction not found or unauthorized."
        ) from exc
    return dashboard_payload(request, user, data)


@app.post("/update/{transaction_id}")
async def update_transaction(
    transaction_id: int,
    request: Request,
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    form = await checked_form(request, user)
    try:
        data = transaction_payload_from_form(form)
    except ValueError as exc:
        return redirect_with_error("/", error_message(exc))
    try:
        TransactionService(db, user.id).update(transaction_id, data)
    except TransactionNotFound:
        return redirect_with_error("/", "Update failed.")
    except ValueError as exc:
        return redirect_with_error("/", error_message(exc))
    return redirect_to("/")


@app.post("/delete/{transaction_id}")
async def delete_transaction(
    transaction_id: int,
    request: Request,
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    await checked_form(request, user)
    try:
        TransactionService(db, user.id).delete(transaction_id)
    except TransactionNotFound:
        return redirect_with_error("/", "Delete failed.")
    return redirect_to("/")


@app.get("/export/csv")
def export_csv(user: User = Depends(current_user), db: Session = Depends(get_db)):
    try:
        csv_text = CSVService(db, user.id).export()
    except NothingToExport as exc:
        return redirect_with_error("/", str(exc))
    return StreamingResponse(
        iter([csv_text]),
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="fintrack_export.csv"'},
    )


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=get_settings().port, reload=False)


if __name__ == "__main__":
    main()
