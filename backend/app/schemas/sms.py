"""Pydantic schemas for SMS settings, templates, preferences and the outbox."""
import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, model_validator

from app.models.sms import SmsTemplateType


class SmsSettingsOut(BaseModel):
    """The auth token is never echoed back; ``has_auth_token`` says whether one is stored."""

    model_config = ConfigDict(from_attributes=True)

    provider: str
    account_sid: str | None
    from_number: str | None
    enabled: bool
    provider_config: dict
    has_auth_token: bool = False


class SmsSettingsUpdate(BaseModel):
    provider: str | None = None
    account_sid: str | None = None
    auth_token: str | None = None
    from_number: str | None = None
    enabled: bool | None = None
    provider_config: dict | None = None


class SmsTemplateIn(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    name: str = Field(min_length=1, max_length=255)
    type: SmsTemplateType
    template: str = Field(min_length=1)
    variables: list[str] = Field(default_factory=list)
    active: bool = True


class SmsTemplateOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    type: str
    template: str
    variables: list[str]
    active: bool
    created_at: datetime


class SmsPreferenceIn(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    phone_number: str = Field(min_length=4, max_length=20)
    enabled: bool = True
    notification_types: list[SmsTemplateType] = Field(default_factory=list)


class SmsPreferenceOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    phone_number: str
    verified: bool
    enabled: bool
    notification_types: list[str]


class SmsSendIn(BaseModel):
    """Either a literal ``message`` or a ``template_type`` rendered with ``variables``."""

    model_config = ConfigDict(use_enum_values=True)

    to_number: str = Field(min_length=4, max_length=20)
    message: str | None = None
    template_type: SmsTemplateType | None = None
    variables: dict[str, str] = Field(default_factory=dict)
    ticket_id: uuid.UUID | None = None
    client_id: uuid.UUID | None = None

    @model_validator(mode="after")
    def message_or_template(self):
        if (self.message is None) == (self.template_type is None):
            raise ValueError("provide exactly one of message or template_type")
        return self


class SmsNotificationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    user_id: uuid.UUID | None
    client_id: uuid.UUID | None
    ticket_id: uuid.UUID | None
    to_number: str
    message: str
    status: str
    provider_message_id: str | None
    error_message: str | None
    retry_count: int
    next_retry_at: datetime | None
    sent_at: datetime | None
    delivered_at: datetime | None
    created_at: datetime
