import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from signflow.config import settings
from signflow.create_tables import create_tables
from signflow.database import SessionLocal
from signflow.errors import IntegrityViolation, SignFlowError
from signflow.logging_config import configure_logging
from signflow.modules.auth.controllers.auth_controller import router as auth_router
from signflow.modules.auth.services.auth_service import AuthService
from signflow.modules.documents.controllers.document_controller import router as document_router
from signflow.modules.envelopes.controllers.envelope_controller import router as envelope_router
from signflow.modules.envelopes.job.credential_expiry import start_credential_expiry_job
from signflow.modules.notifications.controllers.notification_controller import router as notification_router
from signflow.modules.signing.controllers.signing_controller import router as signing_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # --- Startup logic ---
    configure_logging(settings.LOG_LEVEL)
    logger.info("Starting SignFlow API (env=%s)", settings.ENV)
    create_tables()
    scheduler = start_credential_expiry_job(settings.CREDENTIAL_SWEEP_MINUTES)
    with SessionLocal() as session:
        AuthService.ensure_bootstrap_admin(session)
    yield
    # --- Shutdown logic ---
    scheduler.shutdown(wait=False)
    logger.info("SignFlow API stopped")


app = FastAPI(
    title="SignFlow",
    description="API para envelopes de firma electrónica con cadena de integridad",
    version="1.0.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH"],
    allow_headers=[
        "Accept",
        "Accept-Language",
        "Content-Language",
        "Content-Type",
        "Authorization",
        "X-Requested-With",
        "X-Signer-Session",
        "Origin",
    ],
    expose_headers=["Content-Disposition", "X-Content-SHA256"],
    max_age=86400,
)


@app.exception_handler(SignFlowError)
async def signflow_error_handler(request: Request, exc: SignFlowError):
    if isinstance(exc, IntegrityViolation):
        logger.critical("Integrity violation on %s %s: %s", request.method, request.url.path, exc.message)
    elif exc.status_code >= 500:
        logger.error("%s on %s %s: %s", exc.kind, request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    message = "Internal server error" if settings.is_production else str(exc)
    return JSONResponse(status_code=500, content={"kind": "internal_error", "message": message})


# Routers
app.include_router(auth_router)
app.include_router(document_router)
app.include_router(envelope_router)
app.include_router(signing_router)
app.include_router(notification_router)

if __name__ == "__main__":
    uvicorn.run("signflow.main:app", host="0.0.0.0", port=8000, reload=True)
