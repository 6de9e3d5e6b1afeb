from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ..core.config import settings
from ..core.errors import ApprovalWorkflowError
from ..core.logging import setup_logging
from .routers import approvals, debug, evidence, health, purchase_requests

logger = setup_logging()
app = FastAPI(title="Purchase Approvals")


@app.exception_handler(ApprovalWorkflowError)
async def workflow_exception_handler(request: Request, exc: ApprovalWorkflowError):
    log = logger.error if exc.status_code >= 500 else logger.info
    log("Request failed", path=request.url.path, error=exc.error, status_code=exc.status_code)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# Invalid input is reported as 400; submitted values are left out so codes never echo back.
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = [
        {k: v for k, v in err.items() if k not in ("input", "ctx")}
        for err in exc.errors()
    ]
    logger.info("Validation error", path=request.url.path, errors=errors)
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": jsonable_encoder(errors), "error": "validation_error"},
    )


# Configure CORS to allow frontend access
# CORS_ORIGINS can be set in .env as comma-separated list
allowed_origins = [origin.strip() for origin in settings.cors_origins.split(",")]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.router)
app.include_router(purchase_requests.router)
app.include_router(approvals.router)
app.include_router(evidence.router)
app.include_router(debug.router)
