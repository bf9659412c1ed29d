"""
Errores del motor de sesiones de pago.

Cada error conoce su código HTTP; main.py los convierte en la respuesta
{success: false, message, ...detalles}.
"""
from typing import Any, Dict, List, Optional

INVALID_SESSION_MESSAGE = "Invalid or expired session"


class PaymentError(Exception):
    """Error base del flujo de checkout"""

    status_code = 400

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_response(self) -> Dict[str, Any]:
        return {"success": False, "message": self.message, **self.details}


class ValidationError(PaymentError):
    """Datos de entrada mal formados"""

    def __init__(self, message: str, errors: Optional[List[Dict[str, str]]] = None):
        if errors:
            super().__init__(message, errors=errors)
        else:
            super().__init__(message)
        self.errors = errors or []


class InvalidPromoCodeError(ValidationError):
    pass


class SessionNotFoundError(PaymentError):
    """La sesión no existe"""

    def __init__(self, session_id: str):
        super().__init__(INVALID_SESSION_MESSAGE)
        self.session_id = session_id


class SessionExpiredError(PaymentError):
    """La sesión existía pero superó su TTL.

    Para el cliente es indistinguible de SessionNotFoundError.
    """

    def __init__(self, session_id: str):
        super().__init__(INVALID_SESSION_MESSAGE)
        self.session_id = session_id


class PreconditionError(PaymentError):
    """Operación fuera del orden requerido por la máquina de estados"""


class VerificationError(PaymentError):
    """El payment intent informado no coincide con el de la sesión"""


class PaymentNotCompletedError(PaymentError):
    def __init__(self, payment_status: str):
        super().__init__(
            f"Payment not completed. Status: {payment_status}",
            paymentStatus=payment_status,
        )
        self.payment_status = payment_status


class ProcessorError(PaymentError):
    """Falló (o expiró) la llamada al procesador de pagos. El cliente puede reintentar."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message, retryable=True)


class WebhookSignatureError(PaymentError):
    """Webhook sin firma, con firma inválida o con cuerpo ilegible"""
