import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware

from team_auth.config import settings
from team_auth.core.exceptions import (
    TeamAuthException,
    UnauthorizedException,
    NotFoundException,
    ForbiddenException,
    ValidationException,
    ConflictException,
    DependencyException,
    InvariantViolationException,
)
from team_auth.routes import auth_routes, impersonation_routes, invitation_routes, team_routes, user_routes

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    docs_url="/docs" if settings.DEBUG else None,  # Disable in production
    redoc_url="/redoc" if settings.DEBUG else None,
)

# CORS middleware
cors_origins = settings.cors_origins_list
if cors_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=settings.CORS_ALLOW_CREDENTIALS,
        allow_methods=["*"],
        allow_headers=["*"],
    )


def _error_response(status_code: int, exc: TeamAuthException, headers: dict | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"detail": str(exc), "code": exc.code.value},
        headers=headers,
    )


# Exception handlers
@app.exception_handler(UnauthorizedException)
async def unauthorized_exception_handler(request: Request, exc: UnauthorizedException):
    return _error_response(status.HTTP_401_UNAUTHORIZED, exc, headers={"WWW-Authenticate": "Bearer"})


@app.exception_handler(NotFoundException)
async def not_found_exception_handler(request: Request, exc: NotFoundException):
    return _error_response(status.HTTP_404_NOT_FOUND, exc)


@app.exception_handler(ForbiddenException)
async def forbidden_exception_handler(request: Request, exc: ForbiddenException):
    return _error_response(status.HTTP_403_FORBIDDEN, exc)


@app.exception_handler(ValidationException)
async def validation_exception_handler(request: Request, exc: ValidationException):
    return _error_response(status.HTTP_400_BAD_REQUEST, exc)


@app.exception_handler(ConflictException)
async def conflict_exception_handler(request: Request, exc: ConflictException):
    return _error_response(status.HTTP_409_CONFLICT, exc)


@app.exception_handler(DependencyException)
async def dependency_exception_handler(request: Request, exc: DependencyException):
    return _error_response(status.HTTP_503_SERVICE_UNAVAILABLE, exc)


@app.exception_handler(InvariantViolationException)
async def invariant_violation_handler(request: Request, exc: InvariantViolationException):
    logger.error("Invariant violation on %s %s: %s", request.method, request.url.path, exc)
    return _error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, exc)


# Health check endpoint
@app.get("/health")
async def health_check():
    return {"status": "healthy", "version": settings.APP_VERSION}


# Root endpoint
@app.get("/")
async def root():
    return {
        "message": "Team Auth API",
        "version": settings.APP_VERSION,
        "docs": "/docs" if settings.DEBUG else "Documentation disabled in production",
    }


# Include routers
app.include_router(team_routes.router, prefix="/api/teams", tags=["Teams"])
app.include_router(
    invitation_routes.team_router, prefix="/api/teams/{team_id}/invitations", tags=["Invitations"]
)
app.include_router(invitation_routes.router, prefix="/api/invitations", tags=["Invitations"])
app.include_router(auth_routes.router, prefix="/api/auth", tags=["Auth"])
app.include_router(impersonation_routes.router, prefix="/api/impersonation", tags=["Impersonation"])
app.include_router(user_routes.router, prefix="/api/users", tags=["Users"])
