from fastapi import APIRouter, Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from mangum import Mangum

from common.errors import add_error_handlers
from common.logging_config import configure_logging
from common.settings import Settings, get_settings
from connections.api import router as connections_router
from ledger.api import router as transactions_router
from payouts.api import router as payouts_router


def create_app(settings: Settings = None) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(
        title="LeadzPay API",
        description="Provider/buyer lead connections, payout reconciliation and transaction ledger",
        version="1.0.0",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    add_error_handlers(app)

    api = APIRouter(prefix="/api")

    @api.get("/health", tags=["System"])
    def health_check(current: Settings = Depends(get_settings)):
        return {
            "status": "healthy",
            "service": "leadzpay",
            "database": current.database_configured,
            "stripe": current.stripe_configured,
        }

    api.include_router(connections_router)
    api.include_router(transactions_router)
    api.include_router(payouts_router)
    app.include_router(api)
    return app


app = create_app()

handler = Mangum(app)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
