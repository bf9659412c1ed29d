"""
Motor de sesiones de pago.

Máquina de estados efímera, en memoria y por proceso, que coordina un intento
de checkout de principio a fin:

    initialized -> buyer_validated -> payment_intent_created
                -> payment_completed | payment_failed

Cada operación se ejecuta dentro del lock de su sesión (lectura, comprobación
de expiración y escritura forman una sola sección crítica). Las sesiones
completadas se conservan hasta su TTL para que las reconfirmaciones y los
webhooks repetidos sean idempotentes.
"""
import asyncio
import hmac
import logging
import secrets
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

import pricing
from payment_errors import (
    InvalidPromoCodeError,
    PaymentNotCompletedError,
    PreconditionError,
    SessionExpiredError,
    SessionNotFoundError,
    ValidationError,
    VerificationError,
)
from payment_models import BuyerInfo, PaymentSession, SessionStatus
from payment_processor import PaymentProcessorClient
from phone_service import PhoneValidator
from promo_codes import PromoCodeResolver
from session_store import SessionStore
from validation import (
    hash_sensitive_data,
    parse_cart_items,
    parse_event_id,
    validate_buyer_fields,
)

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 600


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """ISO 8601 en UTC con milisegundos, p. ej. 2025-01-01T10:00:00.000Z"""
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def generate_order_id(now: datetime) -> str:
    # Marca de tiempo + sufijo 0..999: puede colisionar con mucha carga
    return f"ORD-{int(now.timestamp() * 1000)}-{secrets.randbelow(1000)}"


class PaymentSessionEngine:
    """Servicio para manejar el checkout de entradas"""

    def __init__(
        self,
        store: SessionStore,
        processor: PaymentProcessorClient,
        promo_resolver: PromoCodeResolver,
        phone_validator: PhoneValidator,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        service_fee: Decimal = Decimal("10"),
        currency: str = "usd",
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.processor = processor
        self.promo_resolver = promo_resolver
        self.phone_validator = phone_validator
        self.ttl = timedelta(seconds=ttl_seconds)
        self.service_fee = Decimal(str(service_fee))
        self.currency = currency
        self.clock = clock or utcnow

    @property
    def is_simulated(self) -> bool:
        return self.processor.is_simulated

    # ------------------------------------------------------------------
    # Ciclo de vida
    # ------------------------------------------------------------------

    async def initialize_session(self, cart_items: Any, event: Any) -> Dict[str, Any]:
        """
        Crea una sesión de pago en servidor.

        Args:
            cart_items: Líneas del carrito
            event: Evento a comprar, al menos {id}

        Returns:
            Dict con sessionId y expiresAt

        Raises:
            ValidationError: Si el carrito está vacío o mal formado, o falta el evento
        """
        items = parse_cart_items(cart_items)
        event_id = parse_event_id(event)

        now = self.clock()
        session = PaymentSession(
            session_id=secrets.token_hex(16),
            cart_items=items,
            event_id=event_id,
            created_at=now,
            expires_at=now + self.ttl,
            service_fee=self.service_fee,
        )
        session.history.append((session.status.value, now))
        await self.store.insert(session)

        logger.info(f"Payment session {session.session_id} initialized for event {event_id}")
        return {
            "sessionId": session.session_id,
            "expiresAt": format_timestamp(session.expires_at),
        }

    async def validate_buyer(
        self,
        session_id: str,
        first_name: Optional[str],
        last_name: Optional[str],
        email: Optional[str],
        phone: Optional[str],
        country_code: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Valida y asocia los datos del comprador. Solo una vez por sesión.

        Raises:
            ValidationError: Con la lista de errores por campo; la sesión no cambia
            PreconditionError: Si el comprador ya fue validado
        """
        async with self.store.lock(session_id):
            session = await self.store.get(session_id, self.clock())
            if session.status != SessionStatus.INITIALIZED:
                raise PreconditionError("Buyer information already validated")

            errors = validate_buyer_fields(
                {
                    "firstName": first_name,
                    "lastName": last_name,
                    "email": email,
                    "phone": phone,
                    "countryCode": country_code,
                },
                self.phone_validator,
            )
            if errors:
                logger.info(f"Buyer validation failed for session {session_id}: "
                            f"{[error['field'] for error in errors]}")
                raise ValidationError("Validation failed", errors=errors)

            clean_email = email.strip()
            e164_phone = self.phone_validator.to_e164(phone, country_code)
            session.buyer_info = BuyerInfo(
                first_name=first_name.strip(),
                last_name=last_name.strip(),
                email=clean_email,
                phone=e164_phone,
                email_hash=hash_sensitive_data(clean_email.lower()),
                phone_hash=hash_sensitive_data(e164_phone),
            )
            session.transition(SessionStatus.BUYER_VALIDATED, self.clock())

        logger.debug(f"Buyer for session {session_id}: {session.buyer_info.redacted()}")
        logger.info(f"Buyer info validated for session {session_id}")
        return {"valid": True}

    async def apply_promo(self, session_id: str, promo_code: str) -> Dict[str, Any]:
        """
        Aplica un código promocional. El último válido reemplaza al anterior.

        Raises:
            InvalidPromoCodeError: Si el código no existe; la sesión no cambia
            PreconditionError: Si ya hay un payment intent creado
        """
        async with self.store.lock(session_id):
            session = await self.store.get(session_id, self.clock())
            if session.status not in (SessionStatus.INITIALIZED, SessionStatus.BUYER_VALIDATED):
                raise PreconditionError("Promo codes cannot be applied after payment has started")

            resolution = await self.promo_resolver.resolve(promo_code)
            if not resolution.valid:
                raise InvalidPromoCodeError(resolution.message)

            session.discount = resolution.discount_rate
            session.promo_code = promo_code.strip().upper()
            new_total = session.total

        logger.info(f"Promo code {session.promo_code} applied to session {session_id} "
                    f"with {resolution.discount_rate * 100}% discount")
        return {
            "valid": True,
            "discount": float(resolution.discount_rate),
            "message": resolution.message,
            "newTotal": pricing.display_amount(new_total),
        }

    async def create_payment_intent(self, session_id: str) -> Dict[str, Any]:
        """
        Crea el payment intent del total de la sesión.

        Returns:
            Dict con clientSecret, amount, amountInCents e isSimulated en modo simulación

        Raises:
            PreconditionError: Si el comprador no está validado o el intent ya existe
            ProcessorError: Si Stripe falla o no responde a tiempo
        """
        async with self.store.lock(session_id):
            session = await self.store.get(session_id, self.clock())
            if session.status == SessionStatus.INITIALIZED:
                raise PreconditionError("Buyer information not validated")
            if session.status != SessionStatus.BUYER_VALIDATED:
                raise PreconditionError("Payment intent already created for this session")

            total = session.total
            amount_in_cents = pricing.to_smallest_unit(total)
            metadata = {
                "eventId": session.event_id,
                "ticketCount": str(session.ticket_count),
                "sessionId": session.session_id,
            }
            intent = await self.processor.create_intent(
                amount=amount_in_cents,
                currency=self.currency,
                metadata=metadata,
                receipt_email=session.buyer_info.email,
                description=f"Tickets for Event #{session.event_id}",
                idempotency_key=f"payment-session-{session.session_id}",
            )

            session.payment_intent_id = intent.id
            session.is_simulated = self.processor.is_simulated
            session.transition(SessionStatus.PAYMENT_INTENT_CREATED, self.clock())

        if session.is_simulated:
            logger.warning(f"Simulated payment intent {intent.id} created for session {session_id}")
        else:
            logger.info(f"Payment intent {intent.id} created for session {session_id}")

        response = {
            "clientSecret": intent.client_secret,
            "amount": pricing.display_amount(total),
            "amountInCents": amount_in_cents,
        }
        if session.is_simulated:
            response["isSimulated"] = True
        return response

    async def confirm_payment(self, session_id: str, payment_intent_id: str) -> Dict[str, Any]:
        """
        Confirma el pago y genera el pedido.

        Si la sesión ya estaba completada devuelve el mismo pedido, así un doble
        envío nunca genera dos orderId.

        Raises:
            VerificationError: Si el intent no es el de la sesión
            PaymentNotCompletedError: Si Stripe no lo reporta como 'succeeded'
        """
        async with self.store.lock(session_id):
            session = await self.store.get(session_id, self.clock())

            stored_intent = session.payment_intent_id or ""
            if not stored_intent or not hmac.compare_digest(stored_intent, payment_intent_id or ""):
                logger.warning(f"Payment verification failed for session {session_id}: intent mismatch")
                raise VerificationError("Payment verification failed")

            if session.status == SessionStatus.PAYMENT_COMPLETED:
                logger.info(f"Session {session_id} already completed; returning order {session.order_id}")
                return self._completion_payload(session)

            intent = await self.processor.retrieve_intent(payment_intent_id)
            if intent.status != "succeeded":
                logger.info(f"Payment intent {payment_intent_id} not completed: {intent.status}")
                raise PaymentNotCompletedError(intent.status)

            self._complete(session)

        logger.info(f"Payment confirmed for session {session_id}. Order ID: {session.order_id}")
        return self._completion_payload(session)

    async def session_status(self, session_id: str) -> Dict[str, Any]:
        async with self.store.lock(session_id):
            now = self.clock()
            session = await self.store.get(session_id, now)
            return {
                "status": session.status.value,
                "expiresAt": format_timestamp(session.expires_at),
                "timeRemaining": int((session.expires_at - now).total_seconds()),
            }

    def _complete(self, session: PaymentSession) -> None:
        now = self.clock()
        session.order_id = generate_order_id(now)
        session.completed_at = now
        session.failure_reason = None
        session.transition(SessionStatus.PAYMENT_COMPLETED, now)

    def _completion_payload(self, session: PaymentSession) -> Dict[str, Any]:
        payload = {
            "orderId": session.order_id,
            "status": "success",
            "totalPaid": pricing.display_amount(session.total),
        }
        if session.is_simulated:
            payload["isSimulated"] = True
        return payload

    # ------------------------------------------------------------------
    # Webhooks
    # ------------------------------------------------------------------

    async def handle_webhook(self, raw_body: bytes, signature: Optional[str]) -> Dict[str, Any]:
        """
        Procesa una notificación firmada de Stripe.

        Nunca falla por sesiones desconocidas: Stripe reintenta ante cualquier
        respuesta que no sea 2xx.

        Raises:
            WebhookSignatureError: Si la firma falta o no es válida
        """
        event = self.processor.verify_webhook(raw_body, signature)
        event_type = event.get("type")
        intent = (event.get("data") or {}).get("object") or {}

        if event_type == "payment_intent.succeeded":
            logger.info(f"Webhook: Payment intent {intent.get('id')} succeeded")
            await self._on_intent_succeeded(intent)
        elif event_type == "payment_intent.payment_failed":
            logger.warning(f"Webhook: Payment intent {intent.get('id')} failed")
            await self._on_intent_failed(intent)
        else:
            logger.info(f"Webhook: ignoring event type {event_type}")

        return {"received": True}

    async def _on_intent_succeeded(self, intent: Dict[str, Any]) -> None:
        session_id = (intent.get("metadata") or {}).get("sessionId")
        if not session_id:
            logger.warning(f"Webhook: intent {intent.get('id')} has no sessionId metadata")
            return

        async with self.store.lock(session_id):
            session = await self._webhook_session(session_id, intent)
            if session is None:
                return
            if session.status == SessionStatus.PAYMENT_COMPLETED:
                logger.info(f"Webhook: session {session_id} already completed, duplicate event ignored")
                return
            self._complete(session)

        logger.info(f"Session {session_id} marked as completed via webhook. Order ID: {session.order_id}")

    async def _on_intent_failed(self, intent: Dict[str, Any]) -> None:
        session_id = (intent.get("metadata") or {}).get("sessionId")
        if not session_id:
            logger.warning(f"Webhook: intent {intent.get('id')} has no sessionId metadata")
            return

        async with self.store.lock(session_id):
            session = await self._webhook_session(session_id, intent)
            if session is None:
                return
            if session.status == SessionStatus.PAYMENT_COMPLETED:
                logger.warning(f"Webhook: failure for already completed session {session_id} ignored")
                return
            last_error = intent.get("last_payment_error") or {}
            session.failure_reason = last_error.get("message") or "Unknown error"
            session.transition(SessionStatus.PAYMENT_FAILED, self.clock())

        logger.error(f"Session {session_id} marked as failed via webhook: {session.failure_reason}")

    async def _webhook_session(self, session_id: str, intent: Dict[str, Any]) -> Optional[PaymentSession]:
        """Sesión viva asociada al intent del webhook, o None si no corresponde"""
        try:
            session = await self.store.get(session_id, self.clock())
        except (SessionNotFoundError, SessionExpiredError):
            logger.warning(f"Webhook: session {session_id} not found or expired")
            return None
        if session.payment_intent_id != intent.get("id"):
            logger.warning(f"Webhook: intent {intent.get('id')} does not belong to session {session_id}")
            return None
        return session

    # ------------------------------------------------------------------
    # Expiración
    # ------------------------------------------------------------------

    async def sweep_expired(self) -> int:
        removed = await self.store.sweep_expired(self.clock())
        if removed:
            logger.info(f"Expiry sweep removed {removed} payment session(s)")
        return removed

    async def run_expiry_sweeper(self, interval_seconds: float) -> None:
        """Bucle de limpieza; se lanza como tarea al arrancar la aplicación"""
        while True:
            await asyncio.sleep(interval_seconds)
            try:
                await self.sweep_expired()
            except Exception:
                logger.exception("❌ Error limpiando sesiones expiradas")

    async def active_sessions(self) -> List[str]:
        return await self.store.session_ids()
