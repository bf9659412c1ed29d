"""
Resolución de códigos promocionales.

El motor solo depende del protocolo PromoCodeResolver; la tabla estática
puede sustituirse por una implementación respaldada en base de datos.
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Optional, Protocol


@dataclass(frozen=True)
class PromoResolution:
    valid: bool
    discount_rate: Decimal
    message: str


class PromoCodeResolver(Protocol):
    async def resolve(self, code: str) -> PromoResolution:
        ...


# Códigos de demostración
DEFAULT_PROMO_CODES = {
    "TIXMOJO10": Decimal("0.10"),
    "EVENT25": Decimal("0.25"),
}


class StaticPromoCodeResolver:
    """Resolver sobre una tabla en memoria, sin distinguir mayúsculas"""

    def __init__(self, codes: Optional[Dict[str, Decimal]] = None):
        table = DEFAULT_PROMO_CODES if codes is None else codes
        self.codes = {}
        for code, rate in table.items():
            rate = Decimal(str(rate))
            if not (Decimal("0") <= rate < Decimal("1")):
                raise ValueError(f"Discount rate for {code} must be in [0, 1)")
            self.codes[code.upper()] = rate

    async def resolve(self, code: str) -> PromoResolution:
        rate = self.codes.get((code or "").strip().upper())
        if rate is None:
            return PromoResolution(valid=False, discount_rate=Decimal("0"), message="Invalid promo code")
        percent = (rate * 100).normalize()
        return PromoResolution(valid=True, discount_rate=rate, message=f"{percent:f}% discount applied")
