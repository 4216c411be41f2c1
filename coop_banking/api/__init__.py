"""
Cooperative Banking API Application Factory
"""

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .. import __version__
from ..errors import EngineError, ErrorKind, StorageUnavailableError
from ..logging_config import get_logger, log_action
from .members import router as members_router
from .accounts import router as accounts_router
from .loans import router as loans_router
from .deposits import router as deposits_router
from .shares import router as shares_router
from .dividends import router as dividends_router


ERROR_STATUS_CODES = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.INVALID_STATE: 409,
    ErrorKind.INSUFFICIENT_RESOURCE: 422,
    ErrorKind.INVALID_INPUT: 400,
    ErrorKind.DUPLICATE_RESOURCE: 409,
    ErrorKind.CONCURRENCY_CONFLICT: 409,
    ErrorKind.STORAGE_UNAVAILABLE: 503,
}

logger = get_logger("coop_banking.api")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application"""
    app = FastAPI(
        title="Cooperative Banking API",
        description="Ledger and lifecycle engine for cooperative banks",
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

    @app.exception_handler(EngineError)
    async def engine_error_handler(request: Request, exc: EngineError):
        return JSONResponse(status_code=ERROR_STATUS_CODES[exc.kind], content=exc.to_dict())

    @app.exception_handler(StorageUnavailableError)
    async def storage_error_handler(request: Request, exc: StorageUnavailableError):
        log_action(logger, "error", exc.message, action="storage_unavailable",
                   resource=request.url.path)
        return JSONResponse(status_code=503, content=exc.to_dict(), headers={"Retry-After": "1"})

    app.include_router(members_router, prefix="/members", tags=["Members"])
    app.include_router(accounts_router, prefix="/accounts", tags=["Accounts"])
    app.include_router(loans_router, prefix="/loans", tags=["Loans"])
    app.include_router(deposits_router, prefix="/deposits", tags=["Deposits"])
    app.include_router(shares_router, prefix="/shares", tags=["Shares"])
    app.include_router(dividends_router, prefix="/dividends", tags=["Dividends"])

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "coop_banking_api",
            "version": __version__
        }

    return app


app = create_app()


def run_server(host: str = "0.0.0.0", port: int = 8090, debug: bool = False):
    """Run the FastAPI server"""
    uvicorn.run(
        "coop_banking.api:app",
        host=host,
        port=port,
        reload=debug,
        log_level="info"
    )
