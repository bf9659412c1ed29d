from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel

import pricing


class SessionStatus(str, Enum):
    INITIALIZED = "initialized"
    BUYER_VALIDATED = "buyer_validated"
    PAYMENT_INTENT_CREATED = "payment_intent_created"
    PAYMENT_COMPLETED = "payment_completed"
    PAYMENT_FAILED = "payment_failed"


@dataclass(frozen=True)
class CartItem:
    """Una línea del carrito: precio unitario y cantidad de entradas"""
    unit_price: Decimal
    quantity: int


@dataclass(frozen=True)
class BuyerInfo:
    """Datos del comprador ya validados.

    email y phone quedan en claro solo en memoria (recibo de Stripe y
    metadata); cualquier log o escritura duradera usa redacted().
    """
    first_name: str
    last_name: str
    email: str
    phone: str
    email_hash: str
    phone_hash: str

    def redacted(self) -> Dict[str, str]:
        return {
            "first_name": self.first_name,
            "last_name": self.last_name,
            "email": self.email_hash,
            "phone": self.phone_hash,
        }


@dataclass
class PaymentSession:
    """Estado en servidor de un intento de checkout"""
    session_id: str
    cart_items: Tuple[CartItem, ...]
    event_id: str
    created_at: datetime
    expires_at: datetime
    service_fee: Decimal
    status: SessionStatus = SessionStatus.INITIALIZED
    discount: Decimal = Decimal("0")
    promo_code: Optional[str] = None
    buyer_info: Optional[BuyerInfo] = None
    payment_intent_id: Optional[str] = None
    is_simulated: bool = False
    order_id: Optional[str] = None
    completed_at: Optional[datetime] = None
    failure_reason: Optional[str] = None
    # Bitácora de transiciones (estado, instante)
    history: List[Tuple[str, datetime]] = field(default_factory=list)

    @property
    def subtotal(self) -> Decimal:
        return pricing.calculate_subtotal(self.cart_items)

    @property
    def ticket_count(self) -> int:
        return sum(item.quantity for item in self.cart_items)

    @property
    def total(self) -> Decimal:
        return pricing.calculate_total(self.subtotal, self.service_fee, self.discount)

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def transition(self, status: SessionStatus, now: datetime) -> None:
        self.status = status
        self.history.append((status.value, now))


# ---------------------------------------------------------------------------
# Cuerpos de las peticiones HTTP
#
# Los campos son laxos a propósito: el motor valida y responde con el
# formato {success: false, message, errors} propio del checkout.
# ---------------------------------------------------------------------------

class InitializeRequest(BaseModel):
    """Modelo para iniciar una sesión de pago"""
    cartItems: Optional[List[Dict[str, Any]]] = None
    event: Optional[Dict[str, Any]] = None


class BuyerRequest(BaseModel):
    """Modelo para validar los datos del comprador"""
    sessionId: str
    firstName: Optional[str] = None
    lastName: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    countryCode: Optional[str] = None


class PromoRequest(BaseModel):
    sessionId: str
    promoCode: str = ""


class PaymentIntentRequest(BaseModel):
    sessionId: str


class ConfirmPaymentRequest(BaseModel):
    """Modelo para confirmación de pago"""
    sessionId: str
    paymentIntentId: str


class PhoneValidationRequest(BaseModel):
    phone: Optional[str] = None
    countryCode: Optional[str] = None
