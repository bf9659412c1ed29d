"""
Validación en servidor de los datos del checkout: carrito y comprador.

Reglas canónicas del comprador (una sola tabla para todo el flujo):
- firstName / lastName: texto, 1 a 50 caracteres tras recortar espacios
- email: sintaxis válida (email-validator, sin consulta DNS)
- phone: número válido para countryCode (o la región por defecto)
"""
import hashlib
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Tuple

from email_validator import EmailNotValidError, validate_email

from payment_errors import ValidationError
from payment_models import CartItem
from pricing import CENTS, calculate_subtotal
from phone_service import PhoneValidator

NAME_MIN_LENGTH = 1
NAME_MAX_LENGTH = 50

# Importes mayores no se pueden redondear a céntimos con la precisión de Decimal
MAX_SUBTOTAL = Decimal("1e15")


def hash_sensitive_data(data: str) -> str:
    """SHA-256 en hexadecimal, para datos que no deben guardarse en claro"""
    return hashlib.sha256(data.encode("utf-8")).hexdigest()


def _parse_price(raw: Dict[str, Any]) -> Decimal:
    if "unitPrice" in raw:
        value = raw["unitPrice"]
    elif "price" in raw:
        value = raw["price"]
    else:
        # Formato del front-end: {ticket: {price}, quantity}
        ticket = raw.get("ticket")
        value = ticket.get("price") if isinstance(ticket, dict) else None
    if value is None or isinstance(value, bool):
        raise ValueError("missing price")
    price = Decimal(str(value))
    if not price.is_finite() or price < 0:
        raise ValueError("invalid price")
    # Lanza InvalidOperation si no cabe en la precisión del contexto
    price.quantize(CENTS)
    return price


def parse_cart_items(cart_items: Any) -> Tuple[CartItem, ...]:
    """
    Convierte el carrito recibido en CartItem inmutables.

    Args:
        cart_items: Lista de {unitPrice|price|ticket.price, quantity}

    Returns:
        Tupla de CartItem

    Raises:
        ValidationError: Si el carrito está vacío o alguna línea es inválida
    """
    if not isinstance(cart_items, (list, tuple)) or len(cart_items) == 0:
        raise ValidationError("Invalid cart items")

    items = []
    for raw in cart_items:
        if not isinstance(raw, dict):
            raise ValidationError("Invalid cart items")
        quantity = raw.get("quantity")
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            raise ValidationError("Invalid cart items")
        try:
            price = _parse_price(raw)
        except (ValueError, InvalidOperation):
            raise ValidationError("Invalid cart items")
        items.append(CartItem(unit_price=price, quantity=quantity))
    if calculate_subtotal(items) >= MAX_SUBTOTAL:
        raise ValidationError("Invalid cart items")
    return tuple(items)


def parse_event_id(event: Any) -> str:
    if not isinstance(event, dict) or event.get("id") in (None, ""):
        raise ValidationError("Invalid event information")
    return str(event["id"])


def is_valid_email(email: str) -> bool:
    try:
        validate_email(email, check_deliverability=False)
    except EmailNotValidError:
        return False
    return True


def _validate_name(value: Any, field: str, label: str) -> Optional[Dict[str, str]]:
    if not isinstance(value, str) or len(value.strip()) < NAME_MIN_LENGTH:
        return {"field": field, "message": f"{label} is required"}
    if len(value.strip()) > NAME_MAX_LENGTH:
        return {"field": field, "message": f"{label} cannot exceed {NAME_MAX_LENGTH} characters"}
    return None


def validate_buyer_fields(
    data: Dict[str, Any],
    phone_validator: PhoneValidator,
) -> List[Dict[str, str]]:
    """
    Valida los datos del comprador.

    Args:
        data: firstName, lastName, email, phone y opcionalmente countryCode
        phone_validator: Colaborador de validación de teléfonos

    Returns:
        Lista de errores {field, message}; vacía si todo es válido
    """
    errors = []

    for field, label in (("firstName", "First name"), ("lastName", "Last name")):
        error = _validate_name(data.get(field), field, label)
        if error:
            errors.append(error)

    email = data.get("email")
    if not isinstance(email, str) or not email.strip():
        errors.append({"field": "email", "message": "Email is required"})
    elif not is_valid_email(email.strip()):
        errors.append({"field": "email", "message": "Valid email address is required"})

    phone = data.get("phone")
    country_code = data.get("countryCode")
    if not isinstance(phone, str) or not phone.strip():
        errors.append({"field": "phone", "message": "Phone number is required"})
    elif not phone_validator.validate(phone, country_code):
        if country_code:
            errors.append({"field": "phone", "message": "Valid phone number is required for the selected country"})
        else:
            errors.append({"field": "phone", "message": "Valid phone number is required"})

    return errors
