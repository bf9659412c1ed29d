import os
import logging
from decimal import Decimal
from pathlib import Path

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

# Cargar variables de entorno
env_path = Path(__file__).parent / '.env'
load_dotenv(env_path)

ENVIRONMENT = os.getenv('ENVIRONMENT', 'development')
IS_PRODUCTION = ENVIRONMENT == 'production'
LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')

# Configurar Stripe
STRIPE_SECRET_KEY = os.getenv('STRIPE_SECRET_KEY', '')
STRIPE_PUBLISHABLE_KEY = os.getenv('STRIPE_PUBLISHABLE_KEY', '')
STRIPE_WEBHOOK_SECRET = os.getenv('STRIPE_WEBHOOK_SECRET', '')

# Claves de ejemplo que vienen en el .env de plantilla
PLACEHOLDER_KEYS = {'sk_test_YOUR_TEST_KEY', 'sk_live_YOUR_LIVE_KEY'}

# URLs
FRONTEND_URL = os.getenv('FRONTEND_URL', 'http://localhost:3000')
CORS_ORIGINS = [origin.strip() for origin in FRONTEND_URL.split(',') if origin.strip()]

# Sesiones de pago
SESSION_TTL_SECONDS = int(os.getenv('SESSION_TTL_SECONDS', '600'))  # 10 minutos
SESSION_SWEEP_INTERVAL_SECONDS = int(os.getenv('SESSION_SWEEP_INTERVAL_SECONDS', '600'))

# Precios
PAYMENT_CURRENCY = os.getenv('PAYMENT_CURRENCY', 'usd')
SERVICE_FEE = Decimal(os.getenv('SERVICE_FEE', '10'))

# Procesador de pagos
PROCESSOR_TIMEOUT_SECONDS = float(os.getenv('PROCESSOR_TIMEOUT_SECONDS', '10'))
SIMULATED_CONFIRMATION_DELAY_SECONDS = float(os.getenv('SIMULATED_CONFIRMATION_DELAY_SECONDS', '0.5'))

# Teléfonos
DEFAULT_PHONE_REGION = os.getenv('DEFAULT_PHONE_REGION', 'US')


def is_stripe_configured() -> bool:
    """Indica si hay una clave secreta de Stripe real (no vacía ni de plantilla)"""
    return bool(STRIPE_SECRET_KEY) and STRIPE_SECRET_KEY not in PLACEHOLDER_KEYS


def log_configuration() -> None:
    """Informa al arrancar cómo quedó configurado el procesador de pagos"""
    if is_stripe_configured():
        logger.info("✅ Stripe configurado correctamente")
    else:
        logger.warning(
            f"⚠️ STRIPE_SECRET_KEY no configurada para {ENVIRONMENT}. "
            "Los pagos se ejecutan en modo simulación."
        )
    if not STRIPE_WEBHOOK_SECRET:
        logger.warning("⚠️ STRIPE_WEBHOOK_SECRET no configurada. Los webhooks serán rechazados.")
