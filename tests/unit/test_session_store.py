"""
Tests unitarios del almacén de sesiones y de los códigos promocionales
"""

import asyncio
from datetime import timedelta
from decimal import Decimal

import pytest

from payment_errors import SessionExpiredError, SessionNotFoundError
from payment_models import CartItem, PaymentSession
from promo_codes import StaticPromoCodeResolver

pytestmark = pytest.mark.unit


def make_session(session_id, clock, ttl_seconds=600):
    now = clock()
    return PaymentSession(
        session_id=session_id,
        cart_items=(CartItem(Decimal("50"), 2),),
        event_id="E1",
        created_at=now,
        expires_at=now + timedelta(seconds=ttl_seconds),
        service_fee=Decimal("10"),
    )


@pytest.mark.asyncio
class TestInMemorySessionStore:

    async def test_get_live_session(self, store, clock):
        session = make_session("s1", clock)
        await store.insert(session)
        assert await store.get("s1", clock()) is session

    async def test_get_unknown_session(self, store, clock):
        with pytest.raises(SessionNotFoundError):
            await store.get("missing", clock())

    async def test_expired_session_is_removed_on_access(self, store, clock):
        await store.insert(make_session("s1", clock))
        clock.advance(seconds=600)

        with pytest.raises(SessionExpiredError):
            await store.get("s1", clock())
        assert await store.fetch("s1") is None

        # Una vez eliminada, ya no es "expirada" sino inexistente
        with pytest.raises(SessionNotFoundError):
            await store.get("s1", clock())

    async def test_not_found_and_expired_share_client_message(self, store, clock):
        assert SessionNotFoundError("a").to_response() == SessionExpiredError("a").to_response()

    async def test_sweep_removes_only_expired(self, store, clock):
        await store.insert(make_session("old", clock, ttl_seconds=60))
        await store.insert(make_session("new", clock, ttl_seconds=600))
        clock.advance(seconds=120)

        removed = await store.sweep_expired(clock())

        assert removed == 1
        assert await store.session_ids() == ["new"]

    async def test_lock_serializes_same_session(self, store):
        order = []

        async def worker(name):
            async with store.lock("s1"):
                order.append(f"{name}-in")
                await asyncio.sleep(0.01)
                order.append(f"{name}-out")

        await asyncio.gather(worker("a"), worker("b"))

        assert order == ["a-in", "a-out", "b-in", "b-out"]
        assert store._locks == {}

    async def test_sweep_waits_for_in_flight_operation(self, store, clock):
        await store.insert(make_session("s1", clock, ttl_seconds=60))
        seen = []

        async def operation():
            async with store.lock("s1"):
                await asyncio.sleep(0.01)
                seen.append(await store.fetch("s1") is not None)

        task = asyncio.create_task(operation())
        await asyncio.sleep(0)
        clock.advance(seconds=120)
        removed = await store.sweep_expired(clock())
        await task

        assert seen == [True]
        assert removed == 1


@pytest.mark.asyncio
class TestStaticPromoCodeResolver:

    async def test_known_codes_case_insensitive(self):
        resolver = StaticPromoCodeResolver()
        result = await resolver.resolve("tixmojo10")
        assert result.valid
        assert result.discount_rate == Decimal("0.10")
        assert result.message == "10% discount applied"

        result = await resolver.resolve("Event25")
        assert result.discount_rate == Decimal("0.25")

    async def test_unknown_code(self):
        result = await StaticPromoCodeResolver().resolve("FREE100")
        assert not result.valid
        assert result.message == "Invalid promo code"

    async def test_custom_table_validates_rates(self):
        with pytest.raises(ValueError):
            StaticPromoCodeResolver({"ALL": Decimal("1")})
        resolver = StaticPromoCodeResolver({"half": "0.5"})
        assert (await resolver.resolve("HALF")).discount_rate == Decimal("0.5")
