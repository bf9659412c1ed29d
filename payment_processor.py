"""
Clientes del procesador de pagos.

El motor recibe uno de estos clientes al arrancar:
- StripeProcessorClient: Stripe real (hay STRIPE_SECRET_KEY)
- SimulatedProcessorClient: sin credenciales, imita a Stripe localmente

Ambos verifican la firma de los webhooks igual, porque la verificación es
local y solo necesita STRIPE_WEBHOOK_SECRET.
"""
import asyncio
import logging
import secrets
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

import stripe

from payment_errors import ProcessorError, WebhookSignatureError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CreatedIntent:
    id: str
    client_secret: str


@dataclass(frozen=True)
class RetrievedIntent:
    id: str
    status: str


class PaymentProcessorClient(ABC):
    """Contrato del procesador: crear/consultar intents y verificar webhooks"""

    is_simulated = False

    def __init__(self, webhook_secret: str = "", webhook_tolerance: int = 300):
        self.webhook_secret = webhook_secret
        self.webhook_tolerance = webhook_tolerance

    @abstractmethod
    async def create_intent(
        self,
        amount: int,
        currency: str,
        metadata: Dict[str, str],
        receipt_email: Optional[str] = None,
        description: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> CreatedIntent:
        ...

    @abstractmethod
    async def retrieve_intent(self, intent_id: str) -> RetrievedIntent:
        ...

    def verify_webhook(self, raw_body: bytes, signature: Optional[str]) -> stripe.Event:
        """
        Verifica la firma de Stripe sobre el cuerpo crudo y construye el evento.

        Args:
            raw_body: Cuerpo de la petición tal cual llegó
            signature: Cabecera Stripe-Signature

        Returns:
            stripe.Event verificado

        Raises:
            WebhookSignatureError: Si falta la firma o el secreto, o no son válidos
        """
        if not self.webhook_secret:
            logger.error("Stripe webhook secret not configured; rejecting webhook")
            raise WebhookSignatureError("Webhook secret not configured")
        if not signature:
            raise WebhookSignatureError("Missing stripe-signature header")

        try:
            payload = raw_body.decode("utf-8")
        except UnicodeDecodeError:
            raise WebhookSignatureError("Invalid webhook payload")

        try:
            event = stripe.Webhook.construct_event(
                payload, signature, self.webhook_secret, tolerance=self.webhook_tolerance
            )
        except (ValueError, TypeError, AttributeError):
            # JSON inválido, o JSON que no es un objeto
            raise WebhookSignatureError("Invalid webhook payload")
        except stripe.SignatureVerificationError as e:
            logger.warning(f"Webhook signature verification failed: {e}")
            raise WebhookSignatureError("Invalid webhook signature")

        if not isinstance(event, stripe.Event) or not event.get("type"):
            raise WebhookSignatureError("Invalid webhook payload")
        return event


class StripeProcessorClient(PaymentProcessorClient):
    """Cliente de Stripe con timeout acotado en cada llamada"""

    def __init__(self, api_key: str, webhook_secret: str = "", timeout: float = 10.0):
        super().__init__(webhook_secret)
        self.api_key = api_key
        self.timeout = timeout

    async def _call(self, operation: str, func: Callable, *args: Any, **kwargs: Any) -> Any:
        # stripe-python es síncrono: se ejecuta en un hilo y se limita con wait_for
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(func, *args, api_key=self.api_key, **kwargs),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            logger.error(f"❌ Stripe {operation} timed out after {self.timeout}s")
            raise ProcessorError("Payment processor timed out")
        except stripe.StripeError as e:
            logger.error(f"❌ Error de Stripe en {operation}: {e}")
            raise ProcessorError("Payment processor error")

    async def create_intent(
        self,
        amount: int,
        currency: str,
        metadata: Dict[str, str],
        receipt_email: Optional[str] = None,
        description: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> CreatedIntent:
        params = {
            "amount": amount,
            "currency": currency,
            "metadata": metadata,
            "payment_method_types": ["card"],
            "payment_method_options": {"card": {"request_three_d_secure": "automatic"}},
        }
        if receipt_email:
            params["receipt_email"] = receipt_email
        if description:
            params["description"] = description
        if idempotency_key:
            params["idempotency_key"] = idempotency_key

        intent = await self._call("create_intent", stripe.PaymentIntent.create, **params)
        return CreatedIntent(id=intent.id, client_secret=intent.client_secret)

    async def retrieve_intent(self, intent_id: str) -> RetrievedIntent:
        intent = await self._call("retrieve_intent", stripe.PaymentIntent.retrieve, intent_id)
        return RetrievedIntent(id=intent.id, status=intent.status)


class SimulatedProcessorClient(PaymentProcessorClient):
    """Modo simulación: intents falsos que siempre se confirman tras una breve espera"""

    is_simulated = True

    def __init__(self, webhook_secret: str = "", confirmation_delay: float = 0.5):
        super().__init__(webhook_secret)
        self.confirmation_delay = confirmation_delay

    async def create_intent(
        self,
        amount: int,
        currency: str,
        metadata: Dict[str, str],
        receipt_email: Optional[str] = None,
        description: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> CreatedIntent:
        intent_id = f"pi_simulated_{secrets.token_hex(16)}"
        client_secret = f"{intent_id}_secret_{secrets.token_hex(24)}"
        return CreatedIntent(id=intent_id, client_secret=client_secret)

    async def retrieve_intent(self, intent_id: str) -> RetrievedIntent:
        if self.confirmation_delay > 0:
            await asyncio.sleep(self.confirmation_delay)
        return RetrievedIntent(id=intent_id, status="succeeded")


def build_processor_client(
    secret_key: str,
    webhook_secret: str,
    timeout: float,
    simulated_delay: float,
    live: bool,
) -> PaymentProcessorClient:
    """Elige el cliente una sola vez, al arrancar la aplicación"""
    if live:
        logger.info("Payment processor: Stripe (live)")
        return StripeProcessorClient(secret_key, webhook_secret=webhook_secret, timeout=timeout)
    logger.warning("Payment processor: simulation mode (Stripe not configured)")
    return SimulatedProcessorClient(webhook_secret=webhook_secret, confirmation_delay=simulated_delay)
