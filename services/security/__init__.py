"""Security module for AI Phone Receptionist"""

from .middleware import (
    TwilioSignatureValidator,
    validate_twilio_signature,
)

__all__ = [
    "TwilioSignatureValidator",
    "validate_twilio_signature",
]
