import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from debt_ledger.core.config import settings
from debt_ledger.core.errors import LedgerError
from debt_ledger.core.logging import setup_logging
from debt_ledger.api.routes.auth import router as auth_router
from debt_ledger.api.routes.interest_policies import router as policies_router
from debt_ledger.api.routes.loans import router as loans_router
from debt_ledger.api.routes.payments import router as payments_router
from debt_ledger.api.routes.audit import router as audit_router

setup_logging(settings.log_level, settings.log_format)
logger = logging.getLogger(__name__)

app = FastAPI(title="debt-ledger")

origins = [o.strip() for o in (settings.cors_origins or "").split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins or ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(LedgerError)
async def ledger_error_handler(request: Request, exc: LedgerError):
    logger.warning("%s %s rejected: %s (%s)", request.method, request.url.path, exc.code, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.code, "message": exc.message, "retryable": exc.retryable},
    )


@app.get("/health")
@app.get("/api/health")
def health():
    return {"status": "ok"}

app.include_router(auth_router)
app.include_router(policies_router)
app.include_router(loans_router)
app.include_router(payments_router)
app.include_router(audit_router)
