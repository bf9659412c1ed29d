"""
Endpoints de utilidades de teléfono para el formulario del comprador
"""
from fastapi import APIRouter, HTTPException, Request

from payment_models import PhoneValidationRequest
from phone_service import get_phone_example, get_sorted_country_options

router = APIRouter(prefix="/api/phone", tags=["phone"])


@router.get("/countries")
async def get_countries():
    """Países con su código ISO y prefijo internacional"""
    return {"success": True, "data": get_sorted_country_options()}


@router.post("/validate")
async def validate_phone(body: PhoneValidationRequest, request: Request):
    """
    Valida un teléfono en servidor

    Returns:
        isValid y, si es válido, el número en formato E.164
    """
    if not body.phone or not body.countryCode:
        raise HTTPException(status_code=400, detail="Phone number and country code are required")

    validator = request.app.state.payment_engine.phone_validator
    if not validator.validate(body.phone, body.countryCode):
        return {"success": True, "isValid": False}

    return {
        "success": True,
        "isValid": True,
        "formatted": validator.to_e164(body.phone, body.countryCode),
    }


@router.get("/format-example/{country_code}")
async def get_format_example(country_code: str):
    return {"success": True, "example": get_phone_example(country_code)}
