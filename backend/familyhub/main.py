"""FamilyHub access-control API --- FastAPI application."""
from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from familyhub.config import settings
from familyhub.database import AsyncSessionLocal, async_engine
from familyhub.rbac.errors import (
    ConfigurationError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)

logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


async def seed_system_roles() -> None:
    """Create the platform system roles if none exist yet."""
    from familyhub.middleware.auth import get_audit_sink
    from familyhub.services.role_store import SqlAlchemyRoleStore
    from familyhub.services.security_roles import SecurityRoleService

    async with AsyncSessionLocal() as session:
        service = SecurityRoleService(SqlAlchemyRoleStore(session), get_audit_sink())
        created = await service.seed_system_roles()
    if created:
        logger.info("Seeded system roles: %s", ", ".join(r.name for r in created))
    else:
        logger.info("System roles already present")


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting FamilyHub API...")

    # Verify DB connection
    try:
        async with async_engine.begin() as conn:
            await conn.exec_driver_sql("SELECT 1")
        logger.info("Database connection verified")
    except Exception as e:
        logger.error("Database connection failed: %s", e)

    if settings.SEED_SYSTEM_ROLES_ON_STARTUP:
        try:
            await seed_system_roles()
        except Exception:
            logger.exception("System role seeding failed")

    logger.info("FamilyHub API started successfully")
    yield

    await async_engine.dispose()
    logger.info("FamilyHub API shut down")


app = FastAPI(
    title="FamilyHub",
    description="Family platform API --- security roles, privilege resolution and access decisions",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    return JSONResponse(
        status_code=422,
        content={"detail": "Validation failed", "errors": exc.errors},
    )


@app.exception_handler(ConflictError)
async def conflict_error_handler(request: Request, exc: ConflictError):
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.exception_handler(ForbiddenError)
async def forbidden_error_handler(request: Request, exc: ForbiddenError):
    return JSONResponse(status_code=403, content={"detail": "Forbidden"})


@app.exception_handler(NotFoundError)
async def not_found_error_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(ConfigurationError)
async def configuration_error_handler(request: Request, exc: ConfigurationError):
    logger.error("Role configuration error on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=500, content={"detail": "Role configuration error"})


# Import and register routers
from familyhub.routes import security_roles, users

app.include_router(security_roles.router)
app.include_router(users.router)


@app.get("/api/health")
async def health_check():
    return {"status": "healthy", "service": "FamilyHub API", "version": "1.0.0"}
