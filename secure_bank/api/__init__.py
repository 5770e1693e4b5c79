"""
SecureBank API Application Factory
"""

from typing import Optional

import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .accounts import router as accounts_router
from .auth import router as auth_router
from .dependencies import BankingSystem, logger
from .schemas import error_body
from ..config import get_config
from ..errors import BankError
from ..logging_config import log_action, setup_logging


def error_response(request: Request, status_code: int, content: dict) -> JSONResponse:
    """JSON error body that keeps a session cookie renewed earlier in the request"""
    response = JSONResponse(status_code=status_code, content=content)
    renewed_cookie = getattr(request.state, "renewed_cookie", None)
    if renewed_cookie:
        response.headers.append("set-cookie", renewed_cookie)
    return response


def create_app(system: Optional[BankingSystem] = None) -> FastAPI:
    """Create and configure the FastAPI application"""
    system = system or BankingSystem()

    app = FastAPI(
        title="SecureBank API",
        description="Banking backend: signup, accounts, funding and transaction history",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc"
    )
    app.state.banking_system = system

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[o.strip() for o in system.config.cors_origins.split(",") if o.strip()],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(BankError)
    async def bank_error_handler(request: Request, exc: BankError):
        if exc.status_code >= 500:
            # Internal detail stays in the logs
            log_action(logger, "error", f"Request failed: {exc.message}",
                       action="internal_error", resource=request.url.path)
            return error_response(request, exc.status_code, error_body(exc.code, "Internal server error"))
        return error_response(request, exc.status_code, {"error": exc.to_dict()})

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        field_errors = {}
        for error in exc.errors():
            name = ".".join(str(part) for part in error["loc"] if part != "body")
            field_errors.setdefault(name or "body", error["msg"])
        message = next(iter(field_errors.values()), "Invalid request")
        return error_response(request, status.HTTP_400_BAD_REQUEST,
                              error_body("BAD_REQUEST", message, field_errors))

    # Include routers
    app.include_router(auth_router, prefix="/auth", tags=["Auth"])
    app.include_router(accounts_router, prefix="/accounts", tags=["Accounts"])

    # Health check endpoint
    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "secure_bank_api",
            "version": "1.0.0",
            "schema_version": system.migrations.get_current_version(),
        }

    return app


def run_server(host: Optional[str] = None, port: Optional[int] = None, debug: bool = False):
    """Run the FastAPI server"""
    config = get_config()
    setup_logging(config.log_level, log_format=config.log_format, log_file=config.log_file)

    uvicorn.run(
        "secure_bank.api:create_app",
        factory=True,
        host=host or config.api_host,
        port=port or config.api_port,
        reload=debug,
        log_level=config.log_level.lower()
    )
