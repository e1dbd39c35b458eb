import logging
from contextlib import asynccontextmanager, contextmanager
from datetime import datetime
from typing import Any, Iterator, Optional

from fastapi import APIRouter, BackgroundTasks, Body, Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from amounts import cents_to_amount, parse_amount
from auth import (
    clear_session_cookie,
    identify,
    issue_token,
    set_session_cookie,
)
from config import Settings, get_settings
from database import Base, create_db_engine, create_session_factory, session_scope
from errors import AuthenticationError, FinanceError, InternalError, ValidationError
from mailer import deliver_welcome_email
from models import CATEGORY_COLORS, Budget, Transaction, User
from schemas import BudgetIn, LoginIn, RegisterIn, SessionUser, TransactionIn
from services import BudgetService, MetricsService, TransactionService, UserService

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")


def app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_db(request: Request) -> Iterator[Session]:
    with session_scope(request.app.state.session_factory) as session:
        yield session


def current_user(
    request: Request, settings: Settings = Depends(app_settings)
) -> SessionUser:
    user = identify(request, settings)
    if user is None:
        raise AuthenticationError("Unauthorized")
    return user


@contextmanager
def database_errors(message: str) -> Iterator[None]:
    try:
        yield
    except SQLAlchemyError as exc:
        logger.exception(message)
        raise InternalError(message) from exc


def json_body(payload: Any) -> dict[str, Any]:
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid request body")
    return payload


def require_fields(
    body: dict[str, Any], *fields: str, message: str = "Missing required fields"
) -> None:
    for field in fields:
        value = body.get(field)
        if value is None or (isinstance(value, str) and not value.strip()):
            raise ValidationError(message)


def build_model(model: type[BaseModel], **fields: Any) -> BaseModel:
    try:
        return model(**fields)
    except PydanticValidationError as exc:
        loc = exc.errors()[0].get("loc") or ("request",)
        raise ValidationError(f"Invalid {loc[0]}") from exc


def _timestamp(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def user_to_dict(user: User) -> dict[str, object]:
    return {"id": user.id, "name": user.name, "email": user.email}


def transaction_to_dict(txn: Transaction) -> dict[str, object]:
    return {
        "id": txn.id,
        "userId": txn.user_id,
        "amount": cents_to_amount(txn.amount_cents),
        "category": txn.category,
        "description": txn.description,
        "type": txn.type.value,
        "date": txn.date.isoformat(),
        "createdAt": _timestamp(txn.created_at),
        "updatedAt": _timestamp(txn.updated_at),
    }


def budget_to_dict(budget: Budget) -> dict[str, object]:
    return {
        "id": budget.id,
        "userId": budget.user_id,
        "category": budget.category,
        "limit": cents_to_amount(budget.limit_cents),
        "spent": cents_to_amount(budget.spent_cents),
        "period": budget.period.value,
        "createdAt": _timestamp(budget.created_at),
        "updatedAt": _timestamp(budget.updated_at),
    }


def session_response(
    settings: Settings, user: User, status_code: int
) -> JSONResponse:
    token = issue_token(
        settings, SessionUser(uid=user.id, email=user.email, name=user.name)
    )
    response = JSONResponse(
        {"ok": True, "user": user_to_dict(user)}, status_code=status_code
    )
    set_session_cookie(response, settings, token)
    return response


@router.post("/auth/register")
def register(
    background_tasks: BackgroundTasks,
    payload: Any = Body(default=None),
    settings: Settings = Depends(app_settings),
    db: Session = Depends(get_db),
):
    body = json_body(payload)
    require_fields(body, "name", "email", "password")
    data = build_model(
        RegisterIn, name=body["name"], email=body["email"], password=body["password"]
    )
    with database_errors("Failed to register"):
        user = UserService(db).register(
            data, password_rounds=settings.password_rounds
        )
    background_tasks.add_task(deliver_welcome_email, settings, user.email, user.name)
    return session_response(settings, user, status_code=201)


@router.post("/auth/login")
def login(
    payload: Any = Body(default=None),
    settings: Settings = Depends(app_settings),
    db: Session = Depends(get_db),
):
    body = json_body(payload)
    require_fields(body, "email", "password", message="Missing fields")
    data = build_model(LoginIn, email=body["email"], password=body["password"])
    with database_errors("Failed to login"):
        user = UserService(db).authenticate(data)
    return session_response(settings, user, status_code=200)


@router.post("/auth/logout")
def logout(settings: Settings = Depends(app_settings)):
    response = JSONResponse({"ok": True})
    clear_session_cookie(response, settings)
    return response


@router.get("/transactions")
def list_transactions(
    user: SessionUser = Depends(current_user), db: Session = Depends(get_db)
):
    with database_errors("Failed to fetch transactions"):
        items = TransactionService(db, user.uid).list()
    return [transaction_to_dict(txn) for txn in items]


@router.post("/transactions", status_code=201)
def create_transaction(
    payload: Any = Body(default=None),
    user: SessionUser = Depends(current_user),
    db: Session = Depends(get_db),
):
    body = json_body(payload)
    require_fields(body, "amount", "category", "type", "date")
    try:
        amount_cents = parse_amount(body["amount"])
    except ValueError as exc:
        raise ValidationError("Invalid amount") from exc
    if amount_cents <= 0:
        raise ValidationError("Invalid amount")
    data = build_model(
        TransactionIn,
        amount_cents=amount_cents,
        category=body["category"],
        description=body.get("description"),
        type=body["type"],
        date=body["date"],
    )
    with database_errors("Failed to create transaction"):
        txn = TransactionService(db, user.uid).create(data)
    return transaction_to_dict(txn)


@router.delete("/transactions/{transaction_id}")
def delete_transaction(
    transaction_id: int,
    user: SessionUser = Depends(current_user),
    db: Session = Depends(get_db),
):
    with database_errors("Failed to delete transaction"):
        TransactionService(db, user.uid).delete(transaction_id)
    return {"success": True}


@router.get("/budgets")
def list_budgets(
    user: SessionUser = Depends(current_user), db: Session = Depends(get_db)
):
    with database_errors("Failed to fetch budgets"):
        items = BudgetService(db, user.uid).list()
    return [budget_to_dict(budget) for budget in items]


@router.post("/budgets", status_code=201)
def create_budget(
    payload: Any = Body(default=None),
    user: SessionUser = Depends(current_user),
    db: Session = Depends(get_db),
):
    body = json_body(payload)
    require_fields(body, "category", "limit", "period")
    spent = body.get("spent")
    try:
        limit_cents = parse_amount(body["limit"])
        spent_cents = parse_amount(
            0 if spent is None else spent, allow_negative=True
        )
    except ValueError as exc:
        raise ValidationError("Invalid number for limit or spent") from exc
    if limit_cents <= 0:
        raise ValidationError("Invalid limit")
    data = build_model(
        BudgetIn,
        category=body["category"],
        limit_cents=limit_cents,
        spent_cents=spent_cents,
        period=body["period"],
    )
    with database_errors("Failed to create budget"):
        budget = BudgetService(db, user.uid).create(data)
    return budget_to_dict(budget)


@router.put("/budgets/{budget_id}")
def update_budget(
    budget_id: int,
    payload: Any = Body(default=None),
    user: SessionUser = Depends(current_user),
    db: Session = Depends(get_db),
):
    body = json_body(payload)
    if "spent" not in body:
        raise ValidationError("Missing required field: spent")
    try:
        spent_cents = parse_amount(body["spent"], allow_negative=True)
    except ValueError as exc:
        raise ValidationError("Invalid value for spent") from exc
    with database_errors("Failed to update budget"):
        BudgetService(db, user.uid).set_spent(budget_id, spent_cents)
    return {"success": True}


@router.delete("/budgets/{budget_id}")
def delete_budget(
    budget_id: int,
    user: SessionUser = Depends(current_user),
    db: Session = Depends(get_db),
):
    with database_errors("Failed to delete budget"):
        BudgetService(db, user.uid).delete(budget_id)
    return {"success": True}


@router.post("/budgets/{budget_id}/recalculate")
def recalculate_budget(
    budget_id: int,
    user: SessionUser = Depends(current_user),
    db: Session = Depends(get_db),
):
    with database_errors("Failed to recalculate budget"):
        budget = BudgetService(db, user.uid).recalculate(budget_id)
    return budget_to_dict(budget)


@router.get("/summary")
def summary(
    user: SessionUser = Depends(current_user), db: Session = Depends(get_db)
):
    with database_errors("Failed to build summary"):
        return MetricsService(db, user.uid).summary()


@router.get("/categories")
def categories():
    return [{"name": name, "color": color} for name, color in CATEGORY_COLORS.items()]


async def finance_error_handler(request: Request, exc: FinanceError) -> JSONResponse:
    return JSONResponse({"error": exc.message}, status_code=exc.status_code)


async def request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    return JSONResponse({"error": "Invalid request"}, status_code=400)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()
    engine = create_db_engine(settings.database_url)
    if settings.auto_create_tables:
        Base.metadata.create_all(engine)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        engine.dispose()

    app = FastAPI(title="Finance Tracker", lifespan=lifespan)
    app.state.settings = settings
    app.state.engine = engine
    app.state.session_factory = create_session_factory(engine)
    app.add_exception_handler(FinanceError, finance_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.include_router(router)
    return app


def main():
    import uvicorn

    uvicorn.run(
        "main:create_app", factory=True, host="0.0.0.0", port=8000, reload=False
    )


if __name__ == "__main__":
    main()
