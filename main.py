"""
TIXMOJO - BACKEND DE CHECKOUT
FastAPI + Stripe
Sesiones de pago efímeras en servidor: carrito, comprador, promociones y cobro
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

import payment_config
from payment_endpoints import router as payments_router
from payment_errors import PaymentError
from payment_processor import build_processor_client
from payment_service import PaymentSessionEngine
from phone_endpoints import router as phone_router
from phone_service import PhoneValidator
from promo_codes import StaticPromoCodeResolver
from session_store import InMemorySessionStore

# Configuración de logging
logging.basicConfig(
    level=getattr(logging, payment_config.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def build_engine() -> PaymentSessionEngine:
    """Arma el motor con los colaboradores elegidos a partir de la configuración"""
    payment_config.log_configuration()
    processor = build_processor_client(
        secret_key=payment_config.STRIPE_SECRET_KEY,
        webhook_secret=payment_config.STRIPE_WEBHOOK_SECRET,
        timeout=payment_config.PROCESSOR_TIMEOUT_SECONDS,
        simulated_delay=payment_config.SIMULATED_CONFIRMATION_DELAY_SECONDS,
        live=payment_config.is_stripe_configured(),
    )
    return PaymentSessionEngine(
        store=InMemorySessionStore(),
        processor=processor,
        promo_resolver=StaticPromoCodeResolver(),
        phone_validator=PhoneValidator(payment_config.DEFAULT_PHONE_REGION),
        ttl_seconds=payment_config.SESSION_TTL_SECONDS,
        service_fee=payment_config.SERVICE_FEE,
        currency=payment_config.PAYMENT_CURRENCY,
    )


def create_app(
    engine: Optional[PaymentSessionEngine] = None,
    sweep_interval: float = payment_config.SESSION_SWEEP_INTERVAL_SECONDS,
) -> FastAPI:
    """
    Crea la aplicación FastAPI.

    Args:
        engine: Motor ya construido (tests); por defecto se arma desde la configuración
        sweep_interval: Segundos entre barridos de sesiones expiradas
    """
    engine = engine or build_engine()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        sweeper = asyncio.create_task(engine.run_expiry_sweeper(sweep_interval))
        logger.info(f"Session sweeper started (every {sweep_interval}s)")
        try:
            yield
        finally:
            sweeper.cancel()
            try:
                await sweeper
            except asyncio.CancelledError:
                pass

    app = FastAPI(title="TixMojo Checkout", version="1.0.0", lifespan=lifespan)
    app.state.payment_engine = engine

    # Configurar CORS para permitir solicitudes desde el frontend
    app.add_middleware(
        CORSMiddleware,
        allow_origins=payment_config.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(PaymentError)
    async def payment_error_handler(request: Request, exc: PaymentError):
        if exc.status_code >= 500:
            logger.error(f"Error HTTP {exc.status_code} en {request.url.path}: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content=exc.to_response())

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = [
            {"field": ".".join(str(part) for part in error["loc"][1:]), "message": error["msg"]}
            for error in exc.errors()
        ]
        return JSONResponse(
            status_code=400,
            content={"success": False, "message": "Invalid request body", "errors": errors},
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "message": str(exc.detail)},
        )

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        logger.exception(f"Error inesperado en {request.url.path}")
        content = {"success": False, "message": "Internal server error"}
        if not payment_config.IS_PRODUCTION:
            content["error"] = str(exc)
        return JSONResponse(status_code=500, content=content)

    @app.get("/health")
    async def health_check():
        """
        Endpoint de verificación de salud del servidor.
        """
        return {
            "status": "ok",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "environment": payment_config.ENVIRONMENT,
            "paymentMode": "simulation" if engine.is_simulated else "live",
            "activeSessions": len(await engine.active_sessions()),
        }

    app.include_router(payments_router)
    app.include_router(phone_router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
