from dataclasses import dataclass
from typing import Optional

from twilio.base.exceptions import TwilioRestException
from twilio.rest import Client
from twilio.twiml.messaging_response import MessagingResponse

from teetime.config import settings
from teetime.logging_config import get_logger

logger = get_logger("messaging_service")

WHATSAPP_PREFIX = "whatsapp:"


@dataclass
class SendResult:
    ok: bool
    message_sid: Optional[str] = None
    error: Optional[str] = None


def to_whatsapp_address(number: str) -> str:
    number = (number or "").strip()
    if number.startswith(WHATSAPP_PREFIX):
        return number
    return f"{WHATSAPP_PREFIX}{number}"


def strip_whatsapp_prefix(address: str) -> str:
    address = (address or "").strip()
    if address.startswith(WHATSAPP_PREFIX):
        return address[len(WHATSAPP_PREFIX) :]
    return address


class WhatsAppService:
    """Send WhatsApp messages through the Twilio REST API."""

    def __init__(self, account_sid: str, auth_token: str, from_number: str, client: Optional[Client] = None):
        self.from_number = to_whatsapp_address(from_number)
        self.client = client or Client(account_sid, auth_token)

    def send_message(self, to: str, body: str) -> SendResult:
        try:
            message = self.client.messages.create(body=body, from_=self.from_number, to=to_whatsapp_address(to))
        except TwilioRestException as exc:
            logger.error(
                "WhatsApp send failed",
                extra={"context": {"status": exc.status, "code": exc.code, "error": exc.msg}},
            )
            return SendResult(ok=False, error=f"{exc.code}: {exc.msg}")
        logger.info("WhatsApp message sent", extra={"context": {"message_sid": message.sid}})
        return SendResult(ok=True, message_sid=message.sid)


_whatsapp_service: Optional[WhatsAppService] = None


def get_whatsapp_service() -> Optional[WhatsAppService]:
    """Configured sender, or None when Twilio credentials are missing."""
    global _whatsapp_service
    if not (settings.twilio_account_sid and settings.twilio_auth_token and settings.twilio_whatsapp_from):
        return None
    if _whatsapp_service is None:
        _whatsapp_service = WhatsAppService(
            settings.twilio_account_sid,
            settings.twilio_auth_token,
            settings.twilio_whatsapp_from,
        )
    return _whatsapp_service


def build_twiml_reply(text: Optional[str]) -> str:
    """TwiML acknowledgement; an empty ``text`` yields an empty <Response/>."""
    response = MessagingResponse()
    if text:
        response.message(text)
    return str(response)
