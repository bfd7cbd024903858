from fastapi import FastAPI
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from slowapi.errors import RateLimitExceeded
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from timing_asgi import TimingMiddleware, TimingClient  # type: ignore
from timing_asgi.integrations import StarletteScopeToName  # type: ignore

from app.core import config
from app.core.database.engine import AsyncSessionLocal, init_db
from app.core.errors import DataIntegrityError, ServiceError, StorageError
from app.core.rate_limit import limiter
from app.features.permissions.catalog import PermissionCatalog
from app.features.permissions.routes import router as permission_router
from app.features.settings.routes import router as settings_router
from app.features.settings.service import SystemSettings
from app.features.signouts.routes import router as signout_router
from app.features.users.routes import auth_router, router as user_router
from app.features.users.service import UserService
from app.utils import get_logger


log = get_logger(__name__)
log.info("Initializing server")
app = FastAPI(
    title="Sign-Out Tracker",
    description="Personnel sign-out tracking with PIN-confirmed actions and per-user permissions",
    version="0.1.0",
    docs_url="/docs" if config.ENABLE_DOCS else None,
    redoc_url="/redoc" if config.ENABLE_DOCS else None,
    openapi_url="/openapi.json" if config.ENABLE_DOCS else None
)
app.state.limiter = limiter


class PrintTimings(TimingClient):
    def timing(self, metric_name, timing, tags):
        log.debug(dict(route=metric_name.removeprefix("main.app.features."), timing=timing, tags=tags))


app.add_middleware(TimingMiddleware, client=PrintTimings(), metric_namer=StarletteScopeToName("main", app))

if config.ENABLE_DOCS:
    log.warning("Docs enabled")
if config.ALLOW_ORIGIN:
    log.warning("Setting allow origin to %s", config.ALLOW_ORIGIN)
    origins = [config.ALLOW_ORIGIN]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(_request: Request, exc: RequestValidationError):
    errors = dict()
    for error in exc.errors():
        if "loc" not in error or "msg" not in error:
            continue
        key = error["loc"][-1]
        if key == "__root__":
            key = "root"
        errors[key] = error["msg"]
    log.info("Request validation error %s", errors)
    return JSONResponse(status_code=400, content=jsonable_encoder(errors))


@app.exception_handler(ServiceError)
async def service_exception_handler(request: Request, exc: ServiceError):
    if isinstance(exc, StorageError):
        log.error("%s %s: %s %s", request.method, request.url.path, exc.message, exc.context)
        return JSONResponse(status_code=exc.status_code, content={"detail": "Internal storage error"})
    if isinstance(exc, DataIntegrityError):
        log.error("%s %s: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


@app.exception_handler(RateLimitExceeded)
def rate_limit_exceeded_handler(_request: Request, _exc: RateLimitExceeded) -> Response:
    return JSONResponse({"error": "You are going too fast"}, status_code=429)


@app.on_event("startup")
async def startup():
    """Initialize database, seed the permission catalog and settings, bootstrap the administrator."""
    log.info("Initializing database...")
    await init_db()
    async with AsyncSessionLocal() as db:
        await PermissionCatalog(db).seed_defaults()
        await SystemSettings(db).seed_defaults()
        await UserService(db).ensure_admin()
    log.info("Database initialized successfully")


@app.get("/")
async def root():
    """Root endpoint - API health check."""
    return {
        "message": "Sign-Out Tracker API",
        "version": "0.1.0",
        "status": "online",
        "docs": "/docs" if config.ENABLE_DOCS else None,
        "authentication": {
            "info": "Protected endpoints require Bearer token in Authorization header; mutations also require the caller's PIN",
            "login": "/auth/login",
        },
        "features": {
            "signouts": "Group sign-outs with atomic sign-in",
            "permissions": "Per-user permission grants over a named catalog",
            "users": "Accounts with password login and PIN confirmation",
            "settings": "Overdue thresholds for open sign-outs",
        }
    }


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy"}


# Include routers
app.include_router(auth_router, prefix="/auth", tags=["auth"])
app.include_router(user_router, prefix="/users", tags=["users"])
app.include_router(permission_router, prefix="/permissions", tags=["permissions"])
app.include_router(signout_router, prefix="/signouts", tags=["signouts"])
app.include_router(settings_router, prefix="/settings", tags=["settings"])
