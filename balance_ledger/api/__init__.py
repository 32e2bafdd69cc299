"""
Balance Ledger API Application Factory
"""

import uvicorn
from fastapi import FastAPI

from .balances import router as balances_router
from .. import __version__
from ..config import get_config
from ..logging_config import setup_logging


def create_app() -> FastAPI:
    """Create and configure the FastAPI application"""
    config = get_config()
    setup_logging(level=config.log_level, log_format=config.log_format)

    app = FastAPI(
        title="Balance Ledger API",
        description="Per-user balances with an auditable transaction history",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc"
    )

    app.include_router(balances_router, prefix=config.api_prefix, tags=["Balances"])

    # Health check endpoint
    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "balance_ledger_api",
            "version": __version__
        }

    return app


app = create_app()


def run_server(host: str = None, port: int = None, debug: bool = False):
    """Run the FastAPI server"""
    config = get_config()
    uvicorn.run(
        "balance_ledger.api:app",
        host=host or config.api_host,
        port=port or config.api_port,
        reload=debug,
        log_level=config.log_level.lower()
    )
