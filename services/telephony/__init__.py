"""
=====================================================
AI Phone Receptionist - Telephony (TwiML)
=====================================================
"""

from .twiml import VoiceResponseBuilder, escape_xml

__all__ = [
    "VoiceResponseBuilder",
    "escape_xml",
]
