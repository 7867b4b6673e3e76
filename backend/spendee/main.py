import logging
from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from fastapi import Body, Cookie, FastAPI, File, Header, HTTPException, Query, Request, Response, UploadFile, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from . import actions
from .auth_utils import new_session_token
from .config import settings
from .persistence import get_persistence
from .schemas import (
    ActionResult,
    ApiErrorDetail,
    ApiErrorPayload,
    ApiErrorResponse,
    AuthResponse,
    BulkDeleteRequest,
    HealthResponse,
    LoginRequest,
    RegisterRequest,
)

logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Spendee API",
    version="0.1.0",
    description="Personal finance API: categories, monthly budgets, transactions and savings accounts.",
)

persistence = get_persistence()
active_sessions: dict[str, dict[str, Any]] = {}
SESSION_COOKIE_NAME = "spendee_session"
PUBLIC_API = {"/api/v1/health", "/api/v1/auth/register", "/api/v1/auth/login"}


def _extract_token_from_request(request: Request) -> str | None:
    auth = request.headers.get("Authorization")
    if auth:
        parts = auth.split(" ", 1)
        if len(parts) == 2 and parts[0].lower() == "bearer":
            return parts[1].strip()
    return request.cookies.get(SESSION_COOKIE_NAME)


def _get_session_user_id(token: str | None) -> UUID | None:
    if not token:
        return None
    session = active_sessions.get(token)
    if session is None:
        return None
    session["last_seen"] = datetime.now(timezone.utc)
    return session["user_id"]


def _create_session(user_id: UUID) -> str:
    token = new_session_token()
    active_sessions[token] = {"user_id": user_id, "last_seen": datetime.now(timezone.utc)}
    return token


def build_error_response(details: list[ApiErrorDetail], message: str = "Invalid request payload") -> JSONResponse:
    payload = ApiErrorResponse(
        error=ApiErrorPayload(code="VALIDATION_ERROR", message=message, details=details)
    )
    return JSONResponse(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, content=payload.model_dump())


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    details: list[ApiErrorDetail] = []
    for err in exc.errors():
        loc = ".".join(str(item) for item in err.get("loc", []) if item != "body")
        details.append(ApiErrorDetail(field=loc or "body", message=err.get("msg", "validation error")))
    return build_error_response(details)


@app.exception_handler(ValueError)
async def value_error_exception_handler(request: Request, exc: ValueError) -> JSONResponse:
    return build_error_response([ApiErrorDetail(field="body", message=str(exc))])


@app.middleware("http")
async def api_auth_middleware(request: Request, call_next):
    path = request.url.path
    if path.startswith("/api/v1") and path not in PUBLIC_API:
        token = _extract_token_from_request(request)
        if not _get_session_user_id(token):
            return JSONResponse(status_code=401, content={"detail": "authentication required"})
    return await call_next(request)


def _token_from_header(authorization: str | None) -> str:
    if not authorization:
        raise HTTPException(status_code=401, detail="missing Authorization header")
    parts = authorization.split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise HTTPException(status_code=401, detail="invalid Authorization header")
    return parts[1].strip()


def _require_user(authorization: str | None = None, session_token: str | None = None) -> UUID:
    token = session_token
    if authorization:
        token = _token_from_header(authorization)
    if not token:
        raise HTTPException(status_code=401, detail="missing session token")
    user_id = _get_session_user_id(token)
    if user_id is None:
        raise HTTPException(status_code=401, detail="invalid or expired token")
    return user_id


def _respond(result: ActionResult) -> JSONResponse:
    return JSONResponse(status_code=result.status_code, content=result.model_dump(mode="json"))


@app.get("/api/v1/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    return HealthResponse(status="ok")


@app.post("/api/v1/auth/register", response_model=AuthResponse, status_code=201)
async def auth_register(payload: RegisterRequest, response: Response) -> AuthResponse:
    user = persistence.register_user(payload.email, payload.password, payload.fullName)
    token = _create_session(user["id"])
    response.set_cookie(SESSION_COOKIE_NAME, token, httponly=True, samesite="lax", secure=False)
    logger.info("registered user %s", user["id"])
    return AuthResponse(token=token, userId=user["id"], email=user["email"], fullName=user.get("full_name"))


@app.post("/api/v1/auth/login", response_model=AuthResponse)
async def auth_login(payload: LoginRequest, response: Response) -> AuthResponse:
    user = persistence.authenticate_user(payload.email, payload.password)
    if user is None:
        logger.warning("failed login for %s", payload.email)
        raise HTTPException(status_code=401, detail="invalid email or password")
    token = _create_session(user["id"])
    if payload.rememberMe:
        response.set_cookie(SESSION_COOKIE_NAME, token, httponly=True, samesite="lax", secure=False, max_age=60 * 60 * 24 * 30)
    else:
        response.set_cookie(SESSION_COOKIE_NAME, token, httponly=True, samesite="lax", secure=False)
    return AuthResponse(token=token, userId=user["id"], email=user["email"], fullName=user.get("full_name"))


@app.get("/api/v1/auth/me", response_model=AuthResponse)
async def auth_me(authorization: str | None = Header(default=None), session_token: str | None = Cookie(default=None, alias=SESSION_COOKIE_NAME)) -> AuthResponse:
    user_id = _require_user(authorization, session_token)
    user = persistence.get_user_by_id(user_id)
    if user is None:
        raise HTTPException(status_code=401, detail="user not found")
    token = _token_from_header(authorization) if authorization else session_token
    return AuthResponse(token=token, userId=user["id"], email=user["email"], fullName=user.get("full_name"))


@app.post("/api/v1/auth/logout")
async def auth_logout(
    response: Response,
    authorization: str | None = Header(default=None),
    session_token: str | None = Cookie(default=None, alias=SESSION_COOKIE_NAME),
) -> dict[str, bool]:
    token = _token_from_header(authorization) if authorization else session_token
    if token and token in active_sessions:
        del active_sessions[token]
    response.delete_cookie(SESSION_COOKIE_NAME)
    return {"ok": True}


# categories


@app.get("/api/v1/categories")
async def list_categories(
    authorization: str | None = Header(default=None),
    session_token: str | None = Cookie(default=None, alias=SESSION_COOKIE_NAME),
) -> JSONResponse:
    user_id = _require_user(authorization, session_token)
    return _respond(actions.get_categories(persistence, user_id))


@app.get("/api/v1/categories/options")
async def list_category_options(
    authorization: str | None = Header(default=None),
    session_token: str | None = Cookie(default=None, alias=SESSION_COOKIE_NAME),
) -> JSONResponse:
    user_id = _require_user(authorization, session_token)
    return _respond(actions.get_categories_for_form(persistence, user_id))


@app.post("/api/v1/categories")
async def create_category(
    payload: dict[str, Any] = Body(...),
    authorization: str | None = Header(default=None),
    session_token: str | None = Cookie(default=None, alias=SESSION_COOKIE_NAME),
) -> JSONResponse:
    user_id = _require_user(authorization, session_token)
    return _respond(actions.create_category(persistence, user_id, payload))


@app.put("/api/v1/categories/{category_id}")
async def update_category(
    category_id: UUID,
    payload: dict[str, Any] = Body(...),
    authorization: str | None = Header(default=None),
    session_token: str | None = Cookie(default=None, alias=SESSION_COOKIE_NAME),
) -> JSONResponse:
    user_id = _require_user(authorization, session_token)
    return _respond(actions.update_category(persistence, user_id, category_id, payload))


@app.delete("/api/v1/categories/{category_id}")
async def delete_category(
    category_id: UUID,
    authorization: str | None = Header(default=None),
    session_token: str | None = Cookie(default=None, alias=SESSION_COOKIE_NAME),
) -> JSONResponse:
    user_id = _require_user(authorization, session_token)
    return _respond(actions.delete_category(persistence, user_id, category_id))


@app.post("/api/v1/categories/bulk-delete")
async def bulk_delete_categories(
    payload: BulkDeleteRequest,
    authorization: str | None = Header(default=None),
    session_token: str | None = Cookie(default=None, alias=SESSION_COOKIE_NAME),
) -> JSONResponse:
    user_id = _require_user(authorization, session_token)
    return _respond(actions.delete_categories(persistence, user_id, payload.ids))


# budgets


@app.get("/api/v1/budgets")
async def list_budgets(
    authorization: str | None = Header(default=None),
    session_token: str | None = Cookie(default=None, alias=SESSION_COOKIE_NAME),
) -> JSONResponse:
    user_id = _require_user(authorization, session_token)
    return _respond(actions.get_budgets(persistence, user_id))


@app.post("/api/v1/budgets")
async def create_budget(
    payload: dict[str, Any] = Body(...),
    authorization: str | None = Header(default=None),
    session_token: str | None = Cookie(default=None, alias=SESSION_COOKIE_NAME),
) -> JSONResponse:
    user_id = _require_user(authorization, session_token)
    return _respond(actions.create_budget(persistence, user_id, payload))


@app.put("/api/v1/budgets/{budget_id}")
async def update_budget(
    budget_id: UUID,
    payload: dict[str, Any] = Body(...),
    authorization: str | None = Header(default=None),
    session_token: str | None = Cookie(default=None, alias=SESSION_COOKIE_NAME),
) -> JSONResponse:
    user_id = _require_user(authorization, session_token)
    return _respond(actions.update_budget(persistence, user_id, budget_id, payload))


@app.delete("/api/v1/budgets/{budget_id}")
async def delete_budget(
    budget_id: UUID,
    authorization: str | None = Header(default=None),
    session_token: str | None = Cookie(default=None, alias=SESSION_COOKIE_NAME),
) -> JSONResponse:
    user_id = _require_user(authorization, session_token)
    return _respond(actions.delete_budget(persistence, user_id, budget_id))


@app.post("/api/v1/budgets/bulk-delete")
async def bulk_delete_budgets(
    payload: BulkDeleteRequest,
    authorization: str | None = Header(default=None),
    session_token: str | None = Cookie(default=None, alias=SESSION_COOKIE_NAME),
) -> JSONResponse:
    user_id = _require_user(authorization, session_token)
    return _respond(actions.delete_budgets(persistence, user_id, payload.ids))


# transactions


@app.get("/api/v1/transactions")
async def list_transactions(
    month: str | None = None,
    tx_type: str | None = Query(default=None, alias="type"),
    category_id: UUID | None = Query(default=None, alias="categoryId"),
    authorization: str | None = Header(default=None),
    session_token: str | None = Cookie(default=None, alias=SESSION_COOKIE_NAME),
) -> JSONResponse:
    user_id = _require_user(authorization, session_token)
    return _respond(actions.get_transactions(persistence, user_id, month, tx_type, category_id))


@app.post("/api/v1/transactions")
async def create_transaction(
    payload: dict[str, Any] = Body(...),
    authorization: str | None = Header(default=None),
    session_token: str | None = Cookie(default=None, alias=SESSION_COOKIE_NAME),
) -> JSONResponse:
    user_id = _require_user(authorization, session_token)
    return _respond(actions.create_transaction(persistence, user_id, payload))


@app.get("/api/v1/transactions/export")
async def export_transactions(
    ids: list[UUID] | None = Query(default=None),
    authorization: str | None = Header(default=None),
    session_token: str | None = Cookie(default=None, alias=SESSION_COOKIE_NAME),
) -> Response:
    user_id = _require_user(authorization, session_token)
    result = actions.export_transactions(persistence, user_id, ids)
    if not result.success:
        return _respond(result)
    return Response(
        content=result.data,
        media_type="text/csv",
        headers={"Content-Disposition": "attachment; filename=transactions.csv"},
    )


@app.post("/api/v1/transactions/import")
async def import_transactions(
    file: UploadFile = File(...),
    dry_run: bool = Query(default=False, alias="dryRun"),
    authorization: str | None = Header(default=None),
    session_token: str | None = Cookie(default=None, alias=SESSION_COOKIE_NAME),
) -> JSONResponse:
    user_id = _require_user(authorization, session_token)
    raw = await file.read()
    try:
        content = raw.decode("utf-8")
    except UnicodeDecodeError:
        return _respond(ActionResult.fail("CSV file must be UTF-8 encoded"))
    return _respond(actions.import_transactions(persistence, user_id, content, dry_run))


@app.put("/api/v1/transactions/{transaction_id}")
async def update_transaction(
    transaction_id: UUID,
    payload: dict[str, Any] = Body(...),
    authorization: str | None = Header(default=None),
    session_token: str | None = Cookie(default=None, alias=SESSION_COOKIE_NAME),
) -> JSONResponse:
    user_id = _require_user(authorization, session_token)
    return _respond(actions.update_transaction(persistence, user_id, transaction_id, payload))


@app.delete("/api/v1/transactions/{transaction_id}")
async def delete_transaction(
    transaction_id: UUID,
    authorization: str | None = Header(default=None),
    session_token: str | None = Cookie(default=None, alias=SESSION_COOKIE_NAME),
) -> JSONResponse:
    user_id = _require_user(authorization, session_token)
    return _respond(actions.delete_transaction(persistence, user_id, transaction_id))


@app.post("/api/v1/transactions/bulk-delete")
async def bulk_delete_transactions(
    payload: BulkDeleteRequest,
    authorization: str | None = Header(default=None),
    session_token: str | None = Cookie(default=None, alias=SESSION_COOKIE_NAME),
) -> JSONResponse:
    user_id = _require_user(authorization, session_token)
    return _respond(actions.delete_transactions(persistence, user_id, payload.ids))


# savings


@app.get("/api/v1/savings")
async def list_savings(
    authorization: str | None = Header(default=None),
    session_token: str | None = Cookie(default=None, alias=SESSION_COOKIE_NAME),
) -> JSONResponse:
    user_id = _require_user(authorization, session_token)
    return _respond(actions.get_savings(persistence, user_id))


@app.post("/api/v1/savings")
async def create_savings(
    payload: dict[str, Any] = Body(...),
    authorization: str | None = Header(default=None),
    session_token: str | None = Cookie(default=None, alias=SESSION_COOKIE_NAME),
) -> JSONResponse:
    user_id = _require_user(authorization, session_token)
    return _respond(actions.create_savings(persistence, user_id, payload))


@app.put("/api/v1/savings/{savings_id}")
async def update_savings(
    savings_id: UUID,
    payload: dict[str, Any] = Body(...),
    authorization: str | None = Header(default=None),
    session_token: str | None = Cookie(default=None, alias=SESSION_COOKIE_NAME),
) -> JSONResponse:
    user_id = _require_user(authorization, session_token)
    return _respond(actions.update_savings(persistence, user_id, savings_id, payload))


@app.delete("/api/v1/savings/{savings_id}")
async def delete_saving(
    savings_id: UUID,
    authorization: str | None = Header(default=None),
    session_token: str | None = Cookie(default=None, alias=SESSION_COOKIE_NAME),
) -> JSONResponse:
    user_id = _require_user(authorization, session_token)
    return _respond(actions.delete_saving(persistence, user_id, savings_id))


@app.post("/api/v1/savings/bulk-delete")
async def bulk_delete_savings(
    payload: BulkDeleteRequest,
    authorization: str | None = Header(default=None),
    session_token: str | None = Cookie(default=None, alias=SESSION_COOKIE_NAME),
) -> JSONResponse:
    user_id = _require_user(authorization, session_token)
    return _respond(actions.delete_savings(persistence, user_id, payload.ids))


# summary


@app.get("/api/v1/summary")
async def monthly_summary(
    month: str | None = None,
    authorization: str | None = Header(default=None),
    session_token: str | None = Cookie(default=None, alias=SESSION_COOKIE_NAME),
) -> JSONResponse:
    user_id = _require_user(authorization, session_token)
    return _respond(actions.get_monthly_summary(persistence, user_id, month))
