"""
Servicio de validación y formato de teléfonos.

Centraliza las reglas (libphonenumber vía `phonenumbers`) para que el
checkout y los endpoints de /api/phone respondan lo mismo.
"""
import logging
from typing import Dict, List, Optional

import phonenumbers
from phonenumbers import NumberParseException, PhoneNumberFormat, PhoneNumberType

logger = logging.getLogger(__name__)

# Nombres para mostrar en el selector de país; el resto usa el código ISO
COUNTRY_NAMES = {
    'US': 'United States', 'GB': 'United Kingdom', 'CA': 'Canada', 'AU': 'Australia',
    'NZ': 'New Zealand', 'IN': 'India', 'DE': 'Germany', 'FR': 'France', 'IT': 'Italy',
    'ES': 'Spain', 'JP': 'Japan', 'CN': 'China', 'RU': 'Russia', 'BR': 'Brazil',
    'MX': 'Mexico', 'ZA': 'South Africa', 'SG': 'Singapore', 'KR': 'South Korea',
    'ID': 'Indonesia', 'PH': 'Philippines', 'TH': 'Thailand', 'MY': 'Malaysia',
    'AE': 'United Arab Emirates', 'SA': 'Saudi Arabia', 'IL': 'Israel', 'TR': 'Turkey',
    'CH': 'Switzerland', 'SE': 'Sweden', 'NO': 'Norway', 'DK': 'Denmark', 'FI': 'Finland',
    'PL': 'Poland', 'NL': 'Netherlands', 'BE': 'Belgium', 'AT': 'Austria',
}


class PhoneValidator:
    """Validador inyectable: validate(number, country_code) y to_e164(number, country_code)"""

    def __init__(self, default_region: str = 'US'):
        self.default_region = default_region.upper()

    def _parse(self, number: str, country_code: Optional[str]) -> phonenumbers.PhoneNumber:
        region = (country_code or self.default_region).upper()
        return phonenumbers.parse(number, region)

    def validate(self, number: str, country_code: Optional[str] = None) -> bool:
        if not number:
            return False
        try:
            parsed = self._parse(number, country_code)
        except NumberParseException as e:
            logger.debug(f"Teléfono no parseable: {e}")
            return False
        return phonenumbers.is_valid_number(parsed)

    def to_e164(self, number: str, country_code: Optional[str] = None) -> str:
        """
        Formatea un teléfono en E.164.

        Raises:
            ValueError: Si el número no puede interpretarse
        """
        try:
            parsed = self._parse(number, country_code)
        except NumberParseException as e:
            raise ValueError(f"Cannot parse phone number: {e}") from e
        return phonenumbers.format_number(parsed, PhoneNumberFormat.E164)


def get_sorted_country_options() -> List[Dict[str, str]]:
    """Países soportados con su prefijo, ordenados por nombre"""
    options = []
    for region in phonenumbers.SUPPORTED_REGIONS:
        options.append({
            "code": region,
            "name": COUNTRY_NAMES.get(region, region),
            "dialCode": f"+{phonenumbers.country_code_for_region(region)}",
        })
    return sorted(options, key=lambda option: option["name"])


def get_phone_example(country_code: str) -> Optional[str]:
    """Ejemplo de móvil en formato nacional, o None si el país no existe"""
    example = phonenumbers.example_number_for_type(country_code.upper(), PhoneNumberType.MOBILE)
    if example is None:
        return None
    return phonenumbers.format_number(example, PhoneNumberFormat.NATIONAL)
