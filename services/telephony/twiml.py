"""
=====================================================
AI Phone Receptionist - TwiML Response Builder
=====================================================
Renders the four voice-response shapes the orchestrator can return:

- listen-and-redirect: <Gather> (optional prompt) + <Redirect>
- speak-then-listen:   <Say> + <Gather> + <Redirect>
- speak-then-hangup:   <Say> + <Hangup>
- speak-then-transfer: <Say> + <Dial> + fallback <Say> + <Hangup>

The <Redirect> after each <Gather> brings Twilio back to the voice webhook
with no SpeechResult when the caller stays silent, which is how silence
turns reach the orchestrator.
"""

from typing import Optional
from xml.sax.saxutils import escape as _sax_escape


XML_DECLARATION = '<?xml version="1.0" encoding="UTF-8"?>'

TRANSFER_UNAVAILABLE = (
    "The person you are trying to reach is unavailable at the moment. "
    "Please try again later. Goodbye."
)


def escape_xml(text) -> str:
    """Escape &, <, >, " and ' for TwiML text and attribute values."""
    if not isinstance(text, str):
        return ""
    return _sax_escape(text, {'"': "&quot;", "'": "&apos;"})


class VoiceResponseBuilder:
    """
    Stateless TwiML renderer bound to the voice webhook URL.

    Args:
        action_url: Voice webhook URL used for Gather action and Redirect
        voice: Twilio <Say> voice
        language: Speech recognition / synthesis language
    """

    def __init__(self, action_url: str, voice: str = "Polly.Joanna", language: str = "en-US"):
        self.action_url = action_url
        self.voice = voice
        self.language = language

    def _say(self, text: str) -> str:
        return f'<Say voice="{escape_xml(self.voice)}">{escape_xml(text)}</Say>'

    def _gather(self, prompt: Optional[str] = None, timeout: Optional[int] = None) -> str:
        url = escape_xml(self.action_url)
        timeout_attr = f' timeout="{int(timeout)}"' if timeout is not None else ""
        inner = self._say(prompt) if prompt else ""
        return (
            f'<Gather input="speech" action="{url}" method="POST" '
            f'language="{escape_xml(self.language)}" speechTimeout="auto"{timeout_attr}>'
            f"{inner}</Gather>"
        )

    def _redirect(self) -> str:
        return f'<Redirect method="POST">{escape_xml(self.action_url)}</Redirect>'

    @staticmethod
    def _document(body: str) -> str:
        return f"{XML_DECLARATION}<Response>{body}</Response>"

    def listen_and_redirect(self, prompt: Optional[str] = None, timeout: Optional[int] = None) -> str:
        """
        Listen for speech, optionally speaking a prompt inside the Gather.

        Args:
            prompt: Text spoken while listening (None = listen silently)
            timeout: Seconds to wait for speech to start (None = Twilio default)
        """
        return self._document(self._gather(prompt, timeout) + self._redirect())

    def speak_then_listen(self, text: str) -> str:
        """Speak a reply, then listen for the caller's next utterance."""
        return self._document(self._say(text) + self._gather() + self._redirect())

    def speak_then_hangup(self, text: str) -> str:
        """Speak a closing line and end the call."""
        return self._document(self._say(text) + "<Hangup/>")

    def speak_then_transfer(self, text: str, number: str, caller_id: Optional[str] = None) -> str:
        """
        Speak a hand-off line and dial a human.

        Args:
            text: Line spoken before dialing
            number: E.164 destination
            caller_id: Optional caller ID presented to the destination
        """
        caller_id_attr = f' callerId="{escape_xml(caller_id)}"' if caller_id else ""
        dial = (
            f'<Dial timeout="30"{caller_id_attr}>'
            f"<Number>{escape_xml(number)}</Number></Dial>"
        )
        return self._document(
            self._say(text) + dial + self._say(TRANSFER_UNAVAILABLE) + "<Hangup/>"
        )
