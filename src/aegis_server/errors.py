"""Global exception handlers: map SDK error families to HTTP responses.

The SDK raises ``AegisError`` subclasses grouped by family (validation,
state conflict, not found, configuration, exhaustion).  Rather than
catching these in every route, global handlers pick the status code from
the family and return a client-safe body carrying the stable error
``code``.  Route handlers stay focused on the happy path.

Raw exception messages can contain session ids, program ids or code
strings; they are logged server-side and never sent to the client.
"""

import logging

from fastapi import Request
from fastapi.responses import JSONResponse

from aegis_db.tenancy import InvalidTenantIdError
from aegis_screening.errors import (
    AegisError,
    AnswerValidationError,
    ConfigurationError,
    InputValidationError,
    NotFoundError,
    ResourceExhaustedError,
    RulesetConfigurationError,
    StateConflictError,
)

logger = logging.getLogger(__name__)

# --- Client-safe messages keyed by HTTP status code ---
_SAFE_MESSAGES: dict[int, str] = {
    400: "Invalid request",
    404: "Resource not found",
    409: "Request conflicts with current state",
    422: "Invalid questionnaire definition",
    500: "Internal server error",
    503: "Service temporarily unable to complete the request",
}

# Routes under this prefix accept definitions from editors; configuration
# problems there are the caller's to fix.
_ADMIN_PATH_MARKER = "/admin/"


def _error(status: int, code: str, **extra) -> JSONResponse:
    body = {"detail": _SAFE_MESSAGES.get(status, "Invalid request"), "code": code}
    body.update(extra)
    return JSONResponse(status_code=status, content=body)


async def answer_validation_handler(request: Request, exc: AnswerValidationError) -> JSONResponse:
    """422 with one reason per offending question id."""
    logger.info("Answer validation failed at %s: %s", request.url.path, sorted(exc.errors))
    return JSONResponse(
        status_code=422,
        content={"detail": "Invalid answers", "code": exc.code, "errors": exc.errors},
    )


async def input_validation_handler(request: Request, exc: InputValidationError) -> JSONResponse:
    logger.warning("InputValidationError at %s: %s", request.url.path, exc)
    return _error(400, exc.code)


async def invalid_tenant_handler(request: Request, exc: InvalidTenantIdError) -> JSONResponse:
    logger.warning("Rejected tenant id at %s", request.url.path)
    return JSONResponse(
        status_code=400,
        content={"detail": "Invalid tenant id", "code": exc.code},
    )


async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
    logger.warning("NotFoundError at %s: %s", request.url.path, exc)
    return _error(404, exc.code)


async def state_conflict_handler(request: Request, exc: StateConflictError) -> JSONResponse:
    logger.warning("StateConflictError at %s: %s", request.url.path, exc)
    return _error(409, exc.code)


async def configuration_handler(request: Request, exc: ConfigurationError) -> JSONResponse:
    """422 with the problem list on admin routes; 500 everywhere else.

    Outside admin routes a configuration fault means a stored
    questionnaire is broken; the evaluation has already failed closed.
    """
    if _ADMIN_PATH_MARKER in request.url.path:
        problems = exc.problems if isinstance(exc, RulesetConfigurationError) else [str(exc)]
        logger.info("Definition rejected at %s: %d problem(s)", request.url.path, len(problems))
        return _error(422, exc.code, problems=problems)
    logger.error("Configuration fault at %s: %s", request.url.path, exc)
    return _error(500, exc.code)


async def exhausted_handler(request: Request, exc: ResourceExhaustedError) -> JSONResponse:
    logger.error("ResourceExhaustedError at %s: %s", request.url.path, exc)
    return _error(503, exc.code)


async def aegis_error_handler(request: Request, exc: AegisError) -> JSONResponse:
    """Fallback for an ``AegisError`` outside every family."""
    logger.warning("AegisError at %s: %s", request.url.path, exc)
    return _error(400, exc.code)


async def generic_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unhandled exceptions: log full traceback, return 500."""
    logger.exception("Unhandled exception at %s", request.url.path)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"},
    )


# Registration order does not matter: Starlette picks the handler for the
# most specific class in the exception's MRO.
EXCEPTION_HANDLERS = [
    (AnswerValidationError, answer_validation_handler),
    (InputValidationError, input_validation_handler),
    (InvalidTenantIdError, invalid_tenant_handler),
    (NotFoundError, not_found_handler),
    (StateConflictError, state_conflict_handler),
    (ConfigurationError, configuration_handler),
    (ResourceExhaustedError, exhausted_handler),
    (AegisError, aegis_error_handler),
    (Exception, generic_error_handler),
]
