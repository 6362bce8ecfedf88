"""Application factory for the ops console API.

create_app() wires:
- exception handlers mapping every failure to the error envelope
- a guard answering 400 for unparseable JSON bodies
- the health, cosmos, topics and sessions routers

The lifespan owns the process-wide objects. One RemoteGateway (built from
settings unless injected) lives in app.state.gateway and opens no Azure
connection until first use. The SessionRegistry lives in app.state.sessions.
At shutdown every session is closed, cancelling outstanding page requests,
before the gateway closes its clients.

RequestIDMiddleware is added by add_request_id_middleware() after
create_app(), so it is the outermost layer.
"""

import json
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from opsconsole.api.routes import create_api_router
from opsconsole.config import LogFormat, get_settings
from opsconsole.errors import ApiError, ApiErrorCode
from opsconsole.gateway import RemoteGateway
from opsconsole.logging import configure_logging, get_logger
from opsconsole.middleware.request_id import RequestIDMiddleware
from opsconsole.responses import (
    api_error_handler,
    error_response,
    http_exception_handler,
    unhandled_exception_handler,
)
from opsconsole.services.sessions import SessionRegistry

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the gateway singleton and the session registry, tear both down at exit.

    A gateway already placed on app.state (tests inject fakes this way) is
    used as is.
    """
    settings = get_settings()

    gateway = getattr(app.state, "gateway", None)
    if gateway is None:
        gateway = RemoteGateway.from_settings(settings)
        app.state.gateway = gateway

    app.state.sessions = SessionRegistry(
        gateway,
        max_sessions=settings.max_sessions,
        page_size=settings.document_page_size,
        search_max=settings.document_search_max,
        peek_max=settings.message_peek_max,
    )

    logger.info(
        "gateway_initialized",
        env=settings.opsconsole_env.value,
        fake_backends=settings.use_fake_backends,
        cosmos_configured=settings.cosmos_configured,
        service_bus_configured=settings.service_bus_configured,
    )

    try:
        yield
    finally:
        app.state.sessions.close_all()
        await gateway.close()


JSON_METHODS = ("POST", "PUT", "PATCH")


def _describe_validation_error(exc: RequestValidationError) -> str:
    """First failing location and reason, e.g. "body.container: Field required"."""
    errors = exc.errors()
    if not errors:
        return "Invalid request"
    first = errors[0]
    location = ".".join(str(part) for part in first.get("loc", ()))
    return f"Invalid request: {location}: {first.get('msg', 'invalid value')}"


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Body, path and query validation failures are 400 E_INVALID_REQUEST, not 422."""
    return JSONResponse(
        status_code=400,
        content=error_response(ApiErrorCode.E_INVALID_REQUEST, _describe_validation_error(exc)),
    )


async def reject_malformed_json(request: Request, call_next):
    """Answer 400 for JSON bodies that do not parse, before routing."""
    if request.method in JSON_METHODS and "application/json" in request.headers.get(
        "content-type", ""
    ):
        body = await request.body()
        if body:
            try:
                json.loads(body)
            except ValueError:
                return JSONResponse(
                    status_code=400,
                    content=error_response(ApiErrorCode.E_INVALID_REQUEST, "Malformed JSON body"),
                )
    return await call_next(request)


def create_app(gateway: RemoteGateway | None = None) -> FastAPI:
    """Build the application.

    Args:
        gateway: Prebuilt gateway, used by tests to inject fake stores. Built
            from settings at startup when omitted.
    """
    settings = get_settings()
    configure_logging(json_format=settings.log_format == LogFormat.JSON)

    app = FastAPI(
        title="Ops Console API",
        description="Browse Cosmos DB documents and Service Bus messages, resubmit dead letters",
        version="0.1.0",
        lifespan=lifespan,
    )
    if gateway is not None:
        app.state.gateway = gateway

    app.add_exception_handler(ApiError, api_error_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    app.middleware("http")(reject_malformed_json)

    # Routers are built here so importing this module loads no settings
    app.include_router(create_api_router())

    return app


def add_request_id_middleware(app: FastAPI, log_requests: bool = True) -> None:
    """Install RequestIDMiddleware as the outermost middleware.

    Must be the last middleware added: Starlette runs middleware in reverse
    registration order, and every response (error envelopes included) needs
    the X-Request-ID header.
    """
    app.add_middleware(RequestIDMiddleware, log_requests=log_requests)
