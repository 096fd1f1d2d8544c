from __future__ import annotations
import uuid
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from hubba import observers  # noqa: F401  (registers change-bus subscribers)
from hubba.config import settings
from hubba.errors import AppError, ErrorCode, HTTP_STATUS
from hubba.logging_setup import configure_logging
from hubba.routes.system import router as system_router
from hubba.routes.challenges import router as challenges_router
from hubba.routes.bounties import router as bounties_router
from hubba.routes.ledger import router as ledger_router
from hubba.routes.rate_limits import router as rate_limits_router
from hubba.routes.admin import router as admin_router
from hubba.routes.events import router as events_router
from hubba.routes.users import router as users_router
import structlog

configure_logging()
log = structlog.get_logger()

@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    log.info("startup", env=settings.environment, version=settings.app_version, git_sha=settings.git_sha)
    yield
    # Shutdown
    log.info("shutdown")

app = FastAPI(
    title=f"{settings.app_display_name} API",
    version=settings.app_version,
    lifespan=lifespan,
    description=f"{settings.app_display_name} challenge and bounty settlement API",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.environment == "dev" else settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(system_router)
app.include_router(challenges_router)
app.include_router(bounties_router)
app.include_router(ledger_router)
app.include_router(rate_limits_router)
app.include_router(admin_router)
app.include_router(events_router)
app.include_router(users_router)

@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    if exc.http_status >= 500:
        log.error("request_failed", path=request.url.path, code=exc.code.value, detail=exc.message)
    else:
        log.info("request_rejected", path=request.url.path, code=exc.code.value, detail=exc.message)
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict())

@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=HTTP_STATUS[ErrorCode.INVALID_ARGUMENT],
        content={"detail": "Invalid request", "code": ErrorCode.INVALID_ARGUMENT.value, "details": {"errors": jsonable_errors(exc)}},
    )

def jsonable_errors(exc: RequestValidationError) -> list[dict]:
    return [{"loc": list(e.get("loc", ())), "msg": e.get("msg", "")} for e in exc.errors()]

@app.middleware("http")
async def add_request_id(request: Request, call_next):
    rid = request.headers.get("x-request-id") or str(uuid.uuid4())
    request.state.request_id = rid
    structlog.contextvars.bind_contextvars(request_id=rid)
    response: Response = await call_next(request)
    response.headers["X-Request-ID"] = rid
    structlog.contextvars.clear_contextvars()
    return response
