from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

WHATSAPP_OBJECT = "whatsapp_business_account"


class WhatsAppText(BaseModel):
    body: Optional[str] = None


class WhatsAppReply(BaseModel):
    id: Optional[str] = None
    title: Optional[str] = None


class WhatsAppInteractive(BaseModel):
    type: Optional[str] = None  # button_reply, list_reply
    button_reply: Optional[WhatsAppReply] = None
    list_reply: Optional[WhatsAppReply] = None


class WhatsAppQuickReply(BaseModel):
    payload: Optional[str] = None
    text: Optional[str] = None


class WhatsAppMessage(BaseModel):
    id: str
    from_user: str = Field(validation_alias=AliasChoices("from", "from_user"))  # "from" is reserved in Python
    timestamp: Optional[str] = None
    type: Optional[str] = None  # text, interactive, button, image, ...
    text: Optional[WhatsAppText] = None
    interactive: Optional[WhatsAppInteractive] = None
    button: Optional[WhatsAppQuickReply] = None

    model_config = ConfigDict(extra="allow", populate_by_name=True)


class WhatsAppProfile(BaseModel):
    name: Optional[str] = None


class WhatsAppContact(BaseModel):
    wa_id: Optional[str] = None
    profile: Optional[WhatsAppProfile] = None


class WhatsAppChangeValue(BaseModel):
    messaging_product: Optional[str] = None
    metadata: Optional[dict[str, Any]] = None
    contacts: list[WhatsAppContact] = Field(default_factory=list)
    messages: list[WhatsAppMessage] = Field(default_factory=list)
    statuses: list[Any] = Field(default_factory=list)


class WhatsAppChange(BaseModel):
    field: Optional[str] = None
    value: WhatsAppChangeValue = Field(default_factory=WhatsAppChangeValue)


class WhatsAppEntry(BaseModel):
    id: Optional[str] = None
    changes: list[WhatsAppChange] = Field(default_factory=list)


class WebhookPayload(BaseModel):
    object: Optional[str] = None
    entry: list[WhatsAppEntry] = Field(default_factory=list)
