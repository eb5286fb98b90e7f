from typing import Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class TwilioInboundMessage(BaseModel):
    """Form fields Twilio posts for an inbound WhatsApp message."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    from_number: str = Field(min_length=1, validation_alias=AliasChoices("From", "from_number"))
    body: str = Field(default="", validation_alias=AliasChoices("Body", "body"))
    message_sid: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("MessageSid", "SmsMessageSid", "message_sid"),
    )
    profile_name: Optional[str] = Field(default=None, validation_alias=AliasChoices("ProfileName", "profile_name"))
    wa_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("WaId", "wa_id"))


class TwilioStatusCallback(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    message_sid: str = Field(min_length=1, validation_alias=AliasChoices("MessageSid", "SmsSid", "message_sid"))
    message_status: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("MessageStatus", "SmsStatus", "message_status"),
    )
    error_code: Optional[str] = Field(default=None, validation_alias=AliasChoices("ErrorCode", "error_code"))
    error_message: Optional[str] = Field(default=None, validation_alias=AliasChoices("ErrorMessage", "error_message"))
