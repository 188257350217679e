# trafficreport/main.py
from __future__ import annotations

import json
import logging
from contextlib import asynccontextmanager
from datetime import date
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv
from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from fastapi.staticfiles import StaticFiles
from starlette.datastructures import UploadFile
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.sessions import SessionMiddleware

from trafficreport import __version__, problem_store, user_store
from trafficreport.api_models import (
    CredentialsRequest,
    MessageResponse,
    ProblemOut,
    ProblemTypesResponse,
    RegisterRequest,
    RegisterResponse,
    TokenResponse,
    UploadResponse,
    UserOut,
    UserResponse,
)
from trafficreport.auth import OwnerScope, end_session, require_scope, require_user, start_session
from trafficreport.auth_tokens import create_access_token
from trafficreport.constants import PRIORITY_LABELS, PROBLEM_TYPES, STATUS_LABELS
from trafficreport.db import Database
from trafficreport.errors import ApiError, InternalError, Unauthorized, ValidationError
from trafficreport.images import make_image_loader
from trafficreport.problem_forms import parse_problem_create, parse_problem_update, parse_status_filter
from trafficreport.problems_pdf import render_problem_report, report_filename
from trafficreport.settings import Settings
from trafficreport.uploads import MAX_UPLOAD_BYTES, store_image_upload

log = logging.getLogger("uvicorn.error")

router = APIRouter()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _settings(request: Request) -> Settings:
    return request.app.state.settings


def _db(request: Request) -> Database:
    return request.app.state.db


async def _json_body(request: Request) -> Any:
    try:
        return await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ValidationError("Request body must be valid JSON.") from exc


def _user_out(user: Dict[str, Any]) -> UserOut:
    return UserOut(**user_store.public_user(user))


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------
@router.post("/api/auth/register", response_model=RegisterResponse, status_code=201)
def register(request: Request, payload: RegisterRequest) -> RegisterResponse:
    email = user_store.normalize_email(payload.email)
    if not email or not payload.password:
        raise ValidationError("Email and password are required.")
    try:
        user = user_store.create_user(_db(request), email=email, password=payload.password, name=payload.name)
    except user_store.DuplicateEmailError as exc:
        raise ValidationError("A user with this email already exists.") from exc
    log.info("Registered user %s", email)
    return RegisterResponse(message="User created", user=_user_out(user))


@router.post("/api/auth/login", response_model=UserResponse)
def login(request: Request, payload: CredentialsRequest) -> UserResponse:
    email = user_store.normalize_email(payload.email)
    user = user_store.verify_credentials(_db(request), email, payload.password)
    if not user:
        log.info("Login failed for %s", email or "-")
        raise Unauthorized("Invalid email or password")
    start_session(request, user)
    log.info("User %s logged in", email)
    return UserResponse(user=_user_out(user))


@router.post("/api/auth/token", response_model=TokenResponse)
def issue_token(request: Request, payload: CredentialsRequest) -> TokenResponse:
    email = user_store.normalize_email(payload.email)
    user = user_store.verify_credentials(_db(request), email, payload.password)
    if not user:
        log.info("Token login failed for %s via %s", email or "-", getattr(request.client, "host", "-"))
        raise Unauthorized("Invalid email or password")
    settings = _settings(request)
    token, expires_in = create_access_token(email=user["email"], secret=settings.jwt_secret, ttl=settings.jwt_access_ttl)
    return TokenResponse(access_token=token, expires_in=expires_in)


@router.post("/api/auth/logout", status_code=204)
def logout(request: Request) -> Response:
    email = request.session.get("user")
    end_session(request)
    if email:
        log.info("User %s logged out", email)
    return Response(status_code=204)


@router.get("/api/auth/me", response_model=UserResponse)
def me(user: Dict[str, Any] = Depends(require_user)) -> UserResponse:
    return UserResponse(user=_user_out(user))


# ---------------------------------------------------------------------------
# Problems
# ---------------------------------------------------------------------------
@router.get("/api/problem-options", response_model=ProblemTypesResponse)
def problem_options() -> ProblemTypesResponse:
    return ProblemTypesResponse(
        problem_types=list(PROBLEM_TYPES),
        statuses=dict(STATUS_LABELS),
        priorities=dict(PRIORITY_LABELS),
    )


@router.get("/api/problems", response_model=List[ProblemOut])
def list_problems(status: Optional[str] = None, scope: OwnerScope = Depends(require_scope)) -> List[ProblemOut]:
    status_filter = parse_status_filter(status)
    return [ProblemOut.from_record(record) for record in scope.list_problems(status=status_filter)]


@router.post("/api/problems", response_model=ProblemOut, status_code=201)
async def create_problem(request: Request, scope: OwnerScope = Depends(require_scope)) -> ProblemOut:
    fields = parse_problem_create(await _json_body(request))
    record = scope.create_problem(fields)
    log.info("Problem %s created by %s", record["id"], scope.email)
    return ProblemOut.from_record(record)


@router.get("/api/problems/{problem_id}", response_model=ProblemOut)
def get_problem(problem_id: str, scope: OwnerScope = Depends(require_scope)) -> ProblemOut:
    return ProblemOut.from_record(scope.get_problem(problem_id))


@router.api_route("/api/problems/{problem_id}", methods=["PUT", "PATCH"], response_model=ProblemOut)
async def update_problem(problem_id: str, request: Request, scope: OwnerScope = Depends(require_scope)) -> ProblemOut:
    changes = parse_problem_update(await _json_body(request))
    return ProblemOut.from_record(scope.update_problem(problem_id, changes))


@router.delete("/api/problems/{problem_id}", response_model=MessageResponse)
def delete_problem(problem_id: str, scope: OwnerScope = Depends(require_scope)) -> MessageResponse:
    scope.delete_problem(problem_id)
    return MessageResponse(message="Problem deleted")


# ---------------------------------------------------------------------------
# Report export
# ---------------------------------------------------------------------------
@router.get("/api/reports/problems")
def problems_report(request: Request, status: Optional[str] = None, scope: OwnerScope = Depends(require_scope)) -> Response:
    status_filter = parse_status_filter(status)
    settings = _settings(request)
    generated_on = date.today()
    try:
        problems = scope.list_problems(status=status_filter)
        pdf = render_problem_report(
            problems,
            status_filter,
            load_image=make_image_loader(settings.upload_dir, settings.image_fetch_timeout),
            generated_on=generated_on,
            font_path=settings.report_font_path,
        )
    except ApiError:
        raise
    except Exception as exc:
        log.exception("Report generation failed for %s", scope.email)
        raise InternalError("Report generation failed", details=str(exc)) from exc
    log.info("Generated report for %s (%s problems, filter=%s)", scope.email, len(problems), status_filter or "all")
    filename = report_filename(status_filter, generated_on)
    headers = {
        "Content-Disposition": f'attachment; filename="{filename}"',
        "Cache-Control": "no-store, max-age=0",
    }
    return Response(content=pdf, media_type="application/pdf", headers=headers)


# ---------------------------------------------------------------------------
# Upload
# ---------------------------------------------------------------------------
@router.post("/api/upload", response_model=UploadResponse, status_code=201)
async def upload_image(request: Request, scope: OwnerScope = Depends(require_scope)) -> UploadResponse:
    form = await request.form()
    upload = form.get("file")
    if upload is None:
        raise ValidationError("Missing file.")
    if not isinstance(upload, UploadFile):
        raise ValidationError("Invalid file.")
    # One byte past the limit is enough to reject an oversize file.
    data = await upload.read(MAX_UPLOAD_BYTES + 1)
    url = store_image_upload(data, upload.content_type or "", _settings(request).upload_dir)
    log.info("Upload %s stored for %s", url, scope.email)
    return UploadResponse(url=url)


@router.get("/healthz")
def healthz() -> Dict[str, bool]:
    return {"ok": True}


# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------
def _install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(ApiError)
    async def _api_error(request: Request, exc: ApiError) -> JSONResponse:
        include_details = not (isinstance(exc, InternalError) and _settings(request).is_production)
        return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.to_body(include_details=include_details)))

    @app.exception_handler(RequestValidationError)
    async def _request_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=400,
            content={"error": "Invalid request", "details": jsonable_encoder(exc.errors())},
        )

    @app.exception_handler(StarletteHTTPException)
    async def _http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)}, headers=exc.headers)

    @app.exception_handler(Exception)
    async def _unhandled_error(request: Request, exc: Exception) -> JSONResponse:
        log.exception("Unhandled error on %s %s", request.method, request.url.path)
        body: Dict[str, Any] = {"error": "Internal server error"}
        if not _settings(request).is_production:
            body["details"] = str(exc)
        return JSONResponse(status_code=500, content=body)


def create_app(settings: Optional[Settings] = None, database: Optional[Database] = None) -> FastAPI:
    settings = settings or Settings.from_env()
    database = database or Database.from_settings(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        settings.upload_dir.mkdir(parents=True, exist_ok=True)
        database.open()
        user_store.init_db(database)
        problem_store.init_db(database)
        log.info("trafficreport %s started (env=%s)", __version__, settings.app_env)
        try:
            yield
        finally:
            database.close()

    app = FastAPI(title="Traffic Problem Reports API", version=__version__, lifespan=lifespan)
    app.state.settings = settings
    app.state.db = database

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(
        SessionMiddleware,
        secret_key=settings.session_secret,
        same_site="strict",
        https_only=settings.is_production,
    )

    _install_error_handlers(app)
    app.include_router(router)
    app.mount("/uploads", StaticFiles(directory=str(settings.upload_dir), check_dir=False), name="uploads")
    return app


load_dotenv()
app = create_app()
