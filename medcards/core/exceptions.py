import logging
from typing import Any

from fastapi import HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from medcards.ai.errors import ComparatorIntegrityError, GatewayError, RateLimitError

logger = logging.getLogger("uvicorn.error")


def _coerce_json_safe(value: Any) -> Any:
  """Convert unsupported values into JSON-safe primitives for error responses."""
  if value is None or isinstance(value, bool | int | float | str):
    return value
  if isinstance(value, dict):
    return {str(key): _coerce_json_safe(item) for key, item in value.items()}
  if isinstance(value, list | tuple | set):
    return [_coerce_json_safe(item) for item in value]
  # Serialize exception instances explicitly to avoid leaking non-serializable objects.
  if isinstance(value, BaseException):
    error_message = str(value)
    if error_message:
      return f"{type(value).__name__}: {error_message}"
    return type(value).__name__
  return str(value)


def _error_payload(detail: Any, *, request_id: str | None = None, **extra: Any) -> dict[str, Any]:
  """Build the error body; the request id lets clients correlate with server logs."""
  payload: dict[str, Any] = {"detail": detail, **extra}
  if request_id:
    payload["requestId"] = request_id
  return payload


def _sanitize_validation_errors(errors: Any) -> list[dict[str, Any]]:
  """Return validation errors without raw input payloads."""
  sanitized: list[dict[str, Any]] = []
  for error in errors:
    scrubbed = {key: value for key, value in error.items() if key != "input"}
    if "ctx" in scrubbed and isinstance(scrubbed["ctx"], dict):
      scrubbed_ctx = dict(scrubbed["ctx"])
      scrubbed_ctx.pop("input", None)
      scrubbed["ctx"] = scrubbed_ctx

    sanitized.append(_coerce_json_safe(scrubbed))

  return sanitized


def _request_id(request: Request) -> str | None:
  return getattr(request.state, "request_id", None)


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
  """Global exception handler to catch unhandled errors."""
  request_id = _request_id(request)
  logger.error("Global exception request_id=%s path=%s error_type=%s", request_id, request.url.path, type(exc).__name__, exc_info=True)
  return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=_error_payload("Internal Server Error", request_id=request_id))


async def request_validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
  """Log request validation errors for debugging without leaking payloads."""
  request_id = _request_id(request)
  sanitized_errors = _sanitize_validation_errors(exc.errors())
  logger.warning("Request validation failed request_id=%s path=%s method=%s errors=%s", request_id, request.url.path, request.method, sanitized_errors)
  return JSONResponse(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, content=_error_payload(sanitized_errors, request_id=request_id))


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
  """Handle HTTPExceptions without exposing 5xx details to callers."""
  request_id = _request_id(request)
  if exc.status_code >= 500:
    logger.error("HTTPException request_id=%s path=%s status_code=%s detail=%s", request_id, request.url.path, exc.status_code, exc.detail, exc_info=True)
    return JSONResponse(status_code=exc.status_code, content=_error_payload("Internal Server Error", request_id=request_id))

  # Preserve 4xx details for client-correctable errors.
  return JSONResponse(status_code=exc.status_code, content=_error_payload(exc.detail, request_id=request_id), headers=getattr(exc, "headers", None))


async def comparator_integrity_exception_handler(request: Request, exc: ComparatorIntegrityError) -> JSONResponse:
  """Report which comparator tokens the model lost or corrupted."""
  request_id = _request_id(request)
  logger.warning("Comparator integrity failure request_id=%s path=%s missing=%d unknown=%d suspicious=%d", request_id, request.url.path, len(exc.missing), len(exc.unknown), len(exc.suspicious))
  content = _error_payload(str(exc), request_id=request_id, missingTokens=exc.missing, unknownTokens=exc.unknown, suspiciousFragments=exc.suspicious)
  return JSONResponse(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, content=content)


async def gateway_exception_handler(request: Request, exc: GatewayError) -> JSONResponse:
  """Map rate limits to 429 and other model failures to 502."""
  request_id = _request_id(request)
  if isinstance(exc, RateLimitError):
    logger.warning("Model rate limit request_id=%s path=%s: %s", request_id, request.url.path, exc)
    return JSONResponse(status_code=status.HTTP_429_TOO_MANY_REQUESTS, content=_error_payload("Model rate limit reached. Try again shortly.", request_id=request_id))

  logger.error("Model gateway failure request_id=%s path=%s error=%s", request_id, request.url.path, exc)
  return JSONResponse(status_code=status.HTTP_502_BAD_GATEWAY, content=_error_payload(str(exc), request_id=request_id))
