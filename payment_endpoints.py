"""
Endpoints del checkout de entradas.

Capa fina sobre PaymentSessionEngine: parsea la petición, delega y envuelve
el resultado en {success: true, data}. Los errores del motor los traduce el
manejador registrado en main.py.
"""
from typing import Any, Dict

from fastapi import APIRouter, Depends, Request

import payment_config
from payment_models import (
    BuyerRequest,
    ConfirmPaymentRequest,
    InitializeRequest,
    PaymentIntentRequest,
    PromoRequest,
)
from payment_service import PaymentSessionEngine

router = APIRouter(prefix="/payments", tags=["payments"])


def get_engine(request: Request) -> PaymentSessionEngine:
    return request.app.state.payment_engine


def respond(data: Dict[str, Any]) -> Dict[str, Any]:
    return {"success": True, "data": data}


@router.get("/config")
async def get_payment_config(engine: PaymentSessionEngine = Depends(get_engine)):
    """Configuración pública del procesador (clave publicable y modo)"""
    return respond({
        "publishableKey": payment_config.STRIPE_PUBLISHABLE_KEY or None,
        "mode": "simulation" if engine.is_simulated else "live",
    })


@router.post("/initialize")
async def initialize_payment_session(
    request: InitializeRequest,
    engine: PaymentSessionEngine = Depends(get_engine),
):
    """
    Crea una sesión de pago en servidor

    Args:
        request: cartItems y event {id}

    Returns:
        Dict con sessionId y expiresAt
    """
    return respond(await engine.initialize_session(request.cartItems, request.event))


@router.post("/validate-buyer")
async def validate_buyer(
    request: BuyerRequest,
    engine: PaymentSessionEngine = Depends(get_engine),
):
    """Valida en servidor los datos del comprador"""
    result = await engine.validate_buyer(
        session_id=request.sessionId,
        first_name=request.firstName,
        last_name=request.lastName,
        email=request.email,
        phone=request.phone,
        country_code=request.countryCode,
    )
    return respond(result)


@router.post("/apply-promo")
async def apply_promo_code(
    request: PromoRequest,
    engine: PaymentSessionEngine = Depends(get_engine),
):
    return respond(await engine.apply_promo(request.sessionId, request.promoCode))


@router.post("/create-payment-intent")
async def create_payment_intent(
    request: PaymentIntentRequest,
    engine: PaymentSessionEngine = Depends(get_engine),
):
    """
    Crea el payment intent y devuelve el client secret

    El client secret es seguro de exponer; la clave secreta de Stripe nunca sale del servidor.
    """
    return respond(await engine.create_payment_intent(request.sessionId))


@router.post("/confirm-payment")
async def confirm_payment(
    request: ConfirmPaymentRequest,
    engine: PaymentSessionEngine = Depends(get_engine),
):
    """Confirma un pago completado y genera el pedido"""
    return respond(await engine.confirm_payment(request.sessionId, request.paymentIntentId))


@router.get("/session-status/{session_id}")
async def get_session_status(
    session_id: str,
    engine: PaymentSessionEngine = Depends(get_engine),
):
    """Permite al cliente saber si su sesión sigue vigente"""
    return respond(await engine.session_status(session_id))


@router.post("/webhook")
async def stripe_webhook(
    request: Request,
    engine: PaymentSessionEngine = Depends(get_engine),
):
    """
    Webhook de Stripe

    La firma se verifica sobre el cuerpo crudo, por eso no se parsea como JSON.
    """
    payload = await request.body()
    signature = request.headers.get("stripe-signature")
    return respond(await engine.handle_webhook(payload, signature))
