"""
Retail Banking API Application Factory
"""

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import uvicorn

from .. import __version__
from ..errors import PersistenceFailure
from ..logging_config import get_logger, log_action
from .accounts import router as accounts_router
from .transactions import router as transactions_router
from .fixed_deposits import router as fixed_deposits_router
from .recurring_deposits import router as recurring_deposits_router
from .sweeps import router as sweeps_router


logger = get_logger("retail_banking.api")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application"""
    app = FastAPI(
        title="Retail Banking API",
        description="Savings and current accounts, money movement, fixed and recurring deposits",
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

    app.include_router(accounts_router, prefix="/accounts", tags=["Accounts"])
    app.include_router(transactions_router, prefix="/transactions", tags=["Transactions"])
    app.include_router(fixed_deposits_router, prefix="/fixed-deposits", tags=["Fixed Deposits"])
    app.include_router(recurring_deposits_router, prefix="/recurring-deposits", tags=["Recurring Deposits"])
    app.include_router(sweeps_router, prefix="/sweeps", tags=["Sweeps"])

    @app.exception_handler(PersistenceFailure)
    async def persistence_failure_handler(request: Request, exc: PersistenceFailure):
        log_action(
            logger, "error", f"Persistence failure: {exc.message}",
            action="persistence_failure", resource=str(request.url.path)
        )
        return JSONResponse(
            status_code=500,
            content={"detail": {"error_code": exc.code, "message": "Internal storage error"}}
        )

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "retail_banking_api",
            "version": __version__
        }

    return app


app = create_app()


def run_server(host: str = "0.0.0.0", port: int = 8090, debug: bool = False):
    """Run the FastAPI server"""
    uvicorn.run(
        "retail_banking.api:app",
        host=host,
        port=port,
        reload=debug,
        log_level="info"
    )
