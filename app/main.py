from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.v1.auth.router import router as auth_router
from app.api.v1.deduction_adjustments.router import router as deduction_adjustments_router
from app.api.v1.payments.router import router as payments_router
from app.core.app_logger import setup_logging


def create_app() -> FastAPI:
    setup_logging()
    app = FastAPI(title="School Payroll Backend")

    # CORS: allow frontend to call this API
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Routers
    app.include_router(auth_router)
    app.include_router(deduction_adjustments_router)
    app.include_router(payments_router)

    @app.get("/health", tags=["health"])
    async def health() -> dict:
        return {"status": "ok"}

    return app


app = create_app()
