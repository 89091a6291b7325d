"""
=====================================================
AI Phone Receptionist - Twilio Signature Validation
=====================================================
Twilio signs every webhook with the X-Twilio-Signature header, computed
from the public URL it called and the POSTed form fields. Requests that
fail validation are rejected before any call state is touched.
"""

from typing import Dict, Optional

from fastapi import Request, HTTPException, status
from twilio.request_validator import RequestValidator
from loguru import logger

from config.settings import Settings, get_settings


SIGNATURE_HEADER = "X-Twilio-Signature"


class TwilioSignatureValidator:
    """
    Validates Twilio webhook request signatures.

    Args:
        auth_token: Twilio account auth token
        base_url: Public base URL Twilio is configured with
    """

    def __init__(self, auth_token: str, base_url: str):
        self.validator = RequestValidator(auth_token)
        self.base_url = base_url.rstrip("/")

    def public_url(self, request: Request) -> str:
        """Rebuild the URL Twilio signed (public base URL, not the proxied one)"""
        url = f"{self.base_url}{request.url.path}"
        if request.url.query:
            url = f"{url}?{request.url.query}"
        return url

    async def validate_request(self, request: Request) -> bool:
        """
        Validate a Twilio webhook request.

        Args:
            request: FastAPI request object

        Returns:
            True if signature is valid, False otherwise
        """
        signature = request.headers.get(SIGNATURE_HEADER, "")
        if not signature:
            logger.warning("Twilio: Missing X-Twilio-Signature header")
            return False

        request_url = self.public_url(request)
        params: Dict[str, str] = {}
        if request.method == "POST":
            form_data = await request.form()
            params = {key: value for key, value in form_data.items() if isinstance(value, str)}

        is_valid = self.validator.validate(request_url, params, signature)
        if not is_valid:
            logger.warning(
                f"Twilio: Invalid signature for {request_url}. "
                f"Params: {sorted(params.keys())}"
            )
        return is_valid


def _request_settings(request: Request) -> Settings:
    settings: Optional[Settings] = getattr(request.app.state, "settings", None)
    return settings or get_settings()


async def validate_twilio_signature(request: Request) -> bool:
    """
    FastAPI dependency to validate Twilio webhook signatures.

    Usage:
        @app.post("/twilio/voice")
        async def voice(request: Request, _: bool = Depends(validate_twilio_signature)):
            ...
    """
    settings = _request_settings(request)

    if not settings.twilio_validate_signature:
        return True

    if not settings.twilio_auth_token:
        logger.warning("Twilio: Signature validation enabled but TWILIO_AUTH_TOKEN is missing")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")

    validator = TwilioSignatureValidator(settings.twilio_auth_token, settings.base_url)
    if not await validator.validate_request(request):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid Twilio signature")

    return True
