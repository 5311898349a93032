"""FastAPI application exposing the user resource."""
from __future__ import annotations

import functools
import logging
import re
import threading
import time
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

import anyio
from fastapi import APIRouter, FastAPI, Query, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, field_validator

from .config import Settings
from .errors import (
    ConflictError,
    NotFoundError,
    OperationCancelled,
    TransactionError,
    UserServiceError,
    ValidationError,
)
from .logs import generate_request_id, reset_request_id, set_request_id
from .models import UNSET, User, UserLog
from .service import UserService
from .transactions import Cancellation

T = TypeVar("T")

_EMAIL_PATTERN = re.compile(r"^[a-zA-Z0-9._%+\-]+@[a-zA-Z0-9.\-]+\.[a-zA-Z]{2,}$")
_DEFAULT_LIMIT = 10
_MAX_LIMIT = 100
_GENERIC_ERROR_MESSAGE = "An unexpected error occurred"
_DISCONNECT_POLL_INTERVAL = 0.1

_logger = logging.getLogger("userservice.api")


def _validate_email(value: str) -> str:
    stripped = value.strip()
    if not _EMAIL_PATTERN.match(stripped):
        raise ValueError("must be a valid email address")
    return stripped


class CreateUserRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    email: str = Field(..., max_length=255)

    @field_validator("email")
    @classmethod
    def _check_email(cls, value: str) -> str:
        return _validate_email(value)


class UpdateUserRequest(BaseModel):
    """Partial update. Omitted or empty fields keep their current value."""

    name: Optional[str] = Field(default=None, max_length=100)
    email: Optional[str] = Field(default=None, max_length=255)

    @field_validator("email")
    @classmethod
    def _check_email(cls, value: Optional[str]) -> Optional[str]:
        if value is None or value == "":
            return value
        return _validate_email(value)


class UserResponse(BaseModel):
    id: str
    name: str
    email: str
    created_at: datetime
    updated_at: datetime


class UserListResponse(BaseModel):
    users: List[UserResponse]
    total: int


class UserLogResponse(BaseModel):
    id: str
    user_id: str
    action: str
    created_at: datetime


class UserLogListResponse(BaseModel):
    logs: List[UserLogResponse]


def user_to_response(user: User) -> UserResponse:
    return UserResponse(
        id=user.id,
        name=user.name,
        email=user.email,
        created_at=user.created_at,
        updated_at=user.updated_at,
    )


def log_to_response(log: UserLog) -> UserLogResponse:
    return UserLogResponse(
        id=log.id,
        user_id=log.user_id,
        action=log.action.value,
        created_at=log.created_at,
    )


def resolve_pagination(limit: Optional[int], offset: Optional[int]) -> tuple[int, int]:
    """Clamp paging parameters: out-of-range values fall back to the defaults."""

    resolved_limit = _DEFAULT_LIMIT
    if limit is not None and 0 < limit <= _MAX_LIMIT:
        resolved_limit = limit
    resolved_offset = 0
    if offset is not None and offset >= 0:
        resolved_offset = offset
    return resolved_limit, resolved_offset


def error_status(exc: UserServiceError) -> int:
    if isinstance(exc, TransactionError) and isinstance(exc.original, UserServiceError):
        exc = exc.original
    if isinstance(exc, ValidationError):
        return status.HTTP_400_BAD_REQUEST
    if isinstance(exc, NotFoundError):
        return status.HTTP_404_NOT_FOUND
    if isinstance(exc, ConflictError):
        return status.HTTP_409_CONFLICT
    if isinstance(exc, OperationCancelled):
        return status.HTTP_503_SERVICE_UNAVAILABLE
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def run_cancellable(
    func: Callable[..., T],
    *args: Any,
    timeout: float,
    is_disconnected: Callable[[], Awaitable[bool]],
    poll_interval: float = _DISCONNECT_POLL_INTERVAL,
    **kwargs: Any,
) -> T:
    """Run ``func`` in a worker thread with a :class:`Cancellation` it can observe.

    The cancellation fires when ``timeout`` elapses, when ``is_disconnected``
    reports that the client went away, or when the calling task itself is
    cancelled (for example on server shutdown).
    """

    cancellation = Cancellation()
    watchdog = threading.Timer(timeout, cancellation.cancel)
    watchdog.daemon = True
    watchdog.start()

    async def watch_client() -> None:
        try:
            while not cancellation.cancelled:
                if await is_disconnected():
                    _logger.warning("Client disconnected; cancelling %s", getattr(func, "__name__", func))
                    break
                await anyio.sleep(poll_interval)
        finally:
            cancellation.cancel()

    failure: Optional[Exception] = None
    try:
        async with anyio.create_task_group() as task_group:
            task_group.start_soon(watch_client)
            try:
                result = await anyio.to_thread.run_sync(
                    functools.partial(func, *args, cancellation=cancellation, **kwargs)
                )
            except Exception as exc:
                failure = exc
            task_group.cancel_scope.cancel()
    finally:
        watchdog.cancel()

    if failure is not None:
        raise failure
    return result


def create_app(
    *,
    service: UserService | None = None,
    settings: Settings | None = None,
    logger: logging.Logger | None = None,
) -> FastAPI:
    if settings is None:
        settings = Settings()
    if service is None:
        from .application import build_service

        service = build_service(settings)
    if logger is None:
        logger = _logger

    request_timeout = settings.request_timeout

    app = FastAPI(
        title="User Service",
        description="CRUD API for user accounts",
        version="1.0.0",
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Accept", "Authorization", "Content-Type", "X-Request-ID"],
        expose_headers=["Link", "X-Request-ID"],
        allow_credentials=True,
        max_age=300,
    )
    app.state.service = service
    app.state.settings = settings

    async def run_write(request: Request, func: Callable[..., T], *args: Any) -> T:
        return await run_cancellable(
            func, *args, timeout=request_timeout, is_disconnected=request.is_disconnected
        )

    async def run_read(func: Callable[..., T], *args: Any) -> T:
        return await anyio.to_thread.run_sync(functools.partial(func, *args))

    @app.middleware("http")
    async def request_context(request: Request, call_next):
        request_id = request.headers.get("x-request-id") or generate_request_id()
        token = set_request_id(request_id)
        started = time.perf_counter()
        try:
            logger.info("Request started %s %s", request.method, request.url.path)
            try:
                response = await call_next(request)
            except Exception:
                logger.exception("Request failed %s %s", request.method, request.url.path)
                raise
            logger.info(
                "Request completed %s %s status=%s duration_ms=%.1f",
                request.method,
                request.url.path,
                response.status_code,
                (time.perf_counter() - started) * 1000,
            )
            response.headers["X-Request-ID"] = request_id
            return response
        finally:
            reset_request_id(token)

    @app.get("/health")
    async def healthcheck() -> Dict[str, str]:
        return {"status": "ok"}

    router = APIRouter(prefix="/api/v1")

    @router.post("/users", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
    async def create_user(payload: CreateUserRequest, request: Request) -> UserResponse:
        user = await run_write(request, service.create_user, payload.name, payload.email)
        return user_to_response(user)

    @router.get("/users", response_model=UserListResponse)
    async def list_users(
        limit: Optional[int] = Query(default=None),
        offset: Optional[int] = Query(default=None),
    ) -> UserListResponse:
        resolved_limit, resolved_offset = resolve_pagination(limit, offset)
        page = await run_read(service.list_users, resolved_limit, resolved_offset)
        return UserListResponse(users=[user_to_response(user) for user in page.users], total=page.total)

    @router.get("/users/{user_id}", response_model=UserResponse)
    async def read_user(user_id: str) -> UserResponse:
        user = await run_read(service.get_user, user_id)
        return user_to_response(user)

    @router.put("/users/{user_id}", response_model=UserResponse)
    async def update_user(user_id: str, payload: UpdateUserRequest, request: Request) -> UserResponse:
        name = payload.name if payload.name is not None else UNSET
        email = payload.email if payload.email is not None else UNSET
        user = await run_write(request, service.update_user, user_id, name, email)
        return user_to_response(user)

    @router.delete("/users/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
    async def delete_user(user_id: str, request: Request) -> Response:
        await run_write(request, service.delete_user, user_id)
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    @router.get("/users/{user_id}/logs", response_model=UserLogListResponse)
    async def read_user_logs(user_id: str) -> UserLogListResponse:
        logs = await run_read(service.user_history, user_id)
        return UserLogListResponse(logs=[log_to_response(log) for log in logs])

    app.include_router(router)

    @app.exception_handler(UserServiceError)
    async def handle_service_error(_: Request, exc: UserServiceError):
        status_code = error_status(exc)
        if status_code >= 500:
            logger.error("Request error (%s): %s", status_code, exc.message, exc_info=exc)
        else:
            logger.info("Request error (%s): %s", status_code, exc.message)
        return JSONResponse(status_code=status_code, content={"message": exc.user_message})

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(_: Request, exc: RequestValidationError):
        details = []
        for error in exc.errors():
            location = [str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path")]
            details.append({"field": location[-1] if location else "", "message": str(error.get("msg", ""))})
        message = "; ".join(detail["message"] for detail in details) or "Request validation failed"
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"message": message, "code": "VALIDATION_ERROR", "details": details},
        )

    @app.exception_handler(Exception)
    async def handle_unexpected_error(_: Request, exc: Exception):
        logger.error("Unhandled error: %s", exc, exc_info=exc)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"message": _GENERIC_ERROR_MESSAGE},
        )

    return app


__all__ = ["create_app", "run_cancellable", "error_status", "resolve_pagination", "user_to_response"]
