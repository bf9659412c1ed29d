"""
Aritmética de importes del checkout.

Todo se calcula con Decimal a precisión completa; solo se redondea a 2
decimales al mostrar el importe (display_amount) o al convertir a la unidad
mínima de la moneda (to_smallest_unit).
"""
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable

CENTS = Decimal("0.01")


def calculate_subtotal(cart_items: Iterable) -> Decimal:
    """Σ(precio unitario × cantidad)"""
    return sum((item.unit_price * item.quantity for item in cart_items), Decimal("0"))


def calculate_total(subtotal: Decimal, service_fee: Decimal, discount: Decimal) -> Decimal:
    """
    Total a cobrar. El descuento se aplica solo al subtotal, nunca al cargo de servicio.

    Args:
        subtotal: Suma de las líneas del carrito
        service_fee: Cargo fijo de servicio
        discount: Tasa de descuento en [0, 1)

    Returns:
        subtotal + service_fee - subtotal * discount
    """
    return subtotal + service_fee - subtotal * discount


def to_smallest_unit(amount: Decimal) -> int:
    """Convierte a centavos redondeando la mitad hacia arriba"""
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def display_amount(amount: Decimal) -> float:
    return float(amount.quantize(CENTS, rounding=ROUND_HALF_UP))
