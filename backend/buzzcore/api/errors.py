"""Global error handlers ensuring request_id is included in JSON responses."""

from __future__ import annotations

import math

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from buzzcore.domain.common import errors
from buzzcore.obs import logging as obs_logging


def get_request_id(request: Request, default: str = "unknown") -> str:
	rid = getattr(request.state, "request_id", None) or obs_logging.current_request_id()
	return rid or default


def status_for(exc: errors.CoreError) -> int:
	if isinstance(exc, errors.ValidationError):
		return status.HTTP_400_BAD_REQUEST
	if isinstance(exc, errors.ConflictError):
		return status.HTTP_409_CONFLICT
	if isinstance(exc, (errors.CooldownError, errors.RateLimitExceeded)):
		return status.HTTP_429_TOO_MANY_REQUESTS
	if isinstance(exc, errors.NotFoundError):
		return status.HTTP_404_NOT_FOUND
	if isinstance(exc, errors.UpstreamUnavailable):
		return status.HTTP_503_SERVICE_UNAVAILABLE
	return status.HTTP_400_BAD_REQUEST


def install_error_handlers(app: FastAPI) -> None:
	@app.exception_handler(errors.CoreError)
	async def core_exc_handler(request: Request, exc: errors.CoreError):  # type: ignore[override]
		payload = {"detail": exc.reason, "request_id": get_request_id(request)}
		headers = {}
		if isinstance(exc, errors.CooldownError):
			payload["retryInMs"] = exc.retry_after_ms
			headers["Retry-After"] = str(max(1, math.ceil(exc.retry_after_ms / 1000)))
		return JSONResponse(status_code=status_for(exc), content=payload, headers=headers)

	@app.exception_handler(StarletteHTTPException)
	async def http_exc_handler(request: Request, exc: StarletteHTTPException):  # type: ignore[override]
		payload = {"detail": exc.detail, "request_id": get_request_id(request)}
		return JSONResponse(status_code=exc.status_code, content=payload, headers=getattr(exc, "headers", None))

	@app.exception_handler(RequestValidationError)
	async def validation_exc_handler(request: Request, exc: RequestValidationError):  # type: ignore[override]
		payload = {
			"detail": "validation_error",
			"errors": jsonable_errors(exc),
			"request_id": get_request_id(request),
		}
		return JSONResponse(status_code=422, content=payload)


def jsonable_errors(exc: RequestValidationError) -> list[dict]:
	cleaned = []
	for item in exc.errors():
		entry = {key: value for key, value in item.items() if key in ("loc", "msg", "type")}
		cleaned.append(entry)
	return cleaned
