"""
Fixtures compartidos de los tests del checkout.

El motor se arma con un reloj controlable, un procesador simulado sin
espera y el almacén en memoria, para poder adelantar el tiempo y firmar
webhooks sin credenciales reales.
"""

import hashlib
import hmac
import json
import time
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Dict, List, Optional

import pytest
from fastapi.testclient import TestClient

from main import create_app
from payment_processor import PaymentProcessorClient, CreatedIntent, RetrievedIntent, SimulatedProcessorClient
from payment_service import PaymentSessionEngine
from phone_service import PhoneValidator
from promo_codes import StaticPromoCodeResolver
from session_store import InMemorySessionStore

WEBHOOK_SECRET = "whsec_test_secret"

VALID_BUYER = {
    "firstName": "Ada",
    "lastName": "Lovelace",
    "email": "ada@tixmojo.com",
    "phone": "+12015550123",
}


class FakeClock:
    """Reloj que solo avanza cuando el test lo pide"""

    def __init__(self, start: Optional[datetime] = None):
        self.current = start or datetime(2025, 3, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> None:
        self.current += timedelta(**kwargs)


class FakeStripeProcessor(PaymentProcessorClient):
    """Procesador 'live' de pruebas: registra llamadas y devuelve el estado configurado"""

    is_simulated = False

    def __init__(self, status: str = "succeeded"):
        super().__init__(webhook_secret=WEBHOOK_SECRET)
        self.status = status
        self.created: List[Dict] = []
        self.retrieved: List[str] = []

    async def create_intent(self, amount, currency, metadata, receipt_email=None,
                            description=None, idempotency_key=None):
        intent_id = f"pi_live_{len(self.created) + 1}"
        self.created.append({
            "id": intent_id,
            "amount": amount,
            "currency": currency,
            "metadata": metadata,
            "receipt_email": receipt_email,
            "idempotency_key": idempotency_key,
        })
        return CreatedIntent(id=intent_id, client_secret=f"{intent_id}_secret_abc")

    async def retrieve_intent(self, intent_id):
        self.retrieved.append(intent_id)
        return RetrievedIntent(id=intent_id, status=self.status)


def sign_payload(payload: str, secret: str = WEBHOOK_SECRET, timestamp: Optional[int] = None) -> str:
    """Cabecera Stripe-Signature válida para el payload"""
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed = f"{timestamp}.{payload}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def intent_event(event_type: str, intent_id: str, session_id: str, **extra) -> str:
    intent = {"id": intent_id, "object": "payment_intent", "metadata": {"sessionId": session_id}}
    intent.update(extra)
    return json.dumps({
        "id": "evt_test_1",
        "object": "event",
        "type": event_type,
        "data": {"object": intent},
    })


# ============================================================================
# Motor
# ============================================================================

@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return InMemorySessionStore()


@pytest.fixture
def processor():
    return SimulatedProcessorClient(webhook_secret=WEBHOOK_SECRET, confirmation_delay=0)


@pytest.fixture
def live_processor():
    return FakeStripeProcessor()


def build_engine(store, processor, clock) -> PaymentSessionEngine:
    return PaymentSessionEngine(
        store=store,
        processor=processor,
        promo_resolver=StaticPromoCodeResolver(),
        phone_validator=PhoneValidator("US"),
        ttl_seconds=600,
        service_fee=Decimal("10"),
        clock=clock,
    )


@pytest.fixture
def engine(store, processor, clock):
    return build_engine(store, processor, clock)


@pytest.fixture
def live_engine(store, live_processor, clock):
    return build_engine(store, live_processor, clock)


# ============================================================================
# Cliente HTTP
# ============================================================================

@pytest.fixture
def client(engine):
    """TestClient de FastAPI sobre el motor en modo simulación"""
    app = create_app(engine=engine, sweep_interval=3600)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def live_client(live_engine):
    app = create_app(engine=live_engine, sweep_interval=3600)
    with TestClient(app) as test_client:
        yield test_client
