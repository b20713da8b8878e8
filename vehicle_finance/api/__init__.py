"""
Installment Ledger API Application Factory
"""

from typing import Optional
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import uvicorn

from .. import __version__
from ..config import get_config
from ..exceptions import LedgerError, NotFoundError
from ..logging_config import get_logger, setup_logging
from .system import LedgerSystem, get_ledger_system
from .loans import router as loans_router
from .installments import router as installments_router
from .calendar_exceptions import router as calendar_exceptions_router


logger = get_logger("vehicle_finance.api")


def create_app(system: Optional[LedgerSystem] = None) -> FastAPI:
    """
    Create and configure the FastAPI application

    Args:
        system: Ledger system to serve; the process-wide one when omitted
    """
    app = FastAPI(
        title="Vehicle Finance Installment Ledger API",
        description="Installment coverage and debt accounting for vehicle loans",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc"
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    if system is not None:
        app.dependency_overrides[get_ledger_system] = lambda: system

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError):
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(LedgerError)
    async def ledger_error_handler(request: Request, exc: LedgerError):
        logger.info("Request rejected: %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(
            status_code=400,
            content={"detail": str(exc), "error": type(exc).__name__}
        )

    app.include_router(loans_router, prefix="/loans", tags=["Loans"])
    app.include_router(installments_router, prefix="/installments", tags=["Installments"])
    app.include_router(calendar_exceptions_router, prefix="/calendar-exceptions",
                       tags=["Calendar Exceptions"])

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "vehicle_finance_api",
            "version": __version__
        }

    return app


def run_server(host: Optional[str] = None, port: Optional[int] = None) -> None:
    """Configure logging from settings and serve the API with uvicorn"""
    config = get_config()
    setup_logging(config.log_level, config.log_format, config.log_file)
    uvicorn.run(
        create_app(),
        host=host or config.api_host,
        port=port or config.api_port,
        log_level=config.log_level.lower()
    )
