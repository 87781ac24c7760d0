"""
Main FastAPI application for the DiploMate access API.
Serves health, auth (OTP sign-up, device-bound sign-in), purchases, admin review and metrics.
"""
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api.routes import admin, auth, health, purchases
from app.core.config import settings
from app.core.errors import AccessCoreError, OtpRateLimitedError
from app.core.logging import configure_logging
from app.utils.metrics import router as metrics_router

configure_logging()

app = FastAPI(
    title=f"{settings.app_name} Access API",
    description="Accounts, device binding, payment verification and folder access for DiploMate",
    version="1.0.0",
)

# CORS
origins = [o.strip() for o in settings.cors_origins.split(",") if o.strip()]
if not origins:
    origins = ["http://localhost:3000", "http://127.0.0.1:3000"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(AccessCoreError)
def access_core_error_handler(request: Request, exc: AccessCoreError) -> JSONResponse:
    headers = None
    if isinstance(exc, OtpRateLimitedError) and exc.retry_after:
        headers = {"Retry-After": str(exc.retry_after)}
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message}, headers=headers)


# Routers
app.include_router(health.router, tags=["health"])
app.include_router(auth.router)
app.include_router(purchases.router)
app.include_router(admin.router)
app.include_router(metrics_router)
