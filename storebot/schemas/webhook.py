from typing import Optional
from uuid import UUID

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class MessageKey(BaseModel):
    model_config = ConfigDict(extra="ignore")

    remoteJid: Optional[str] = None
    fromMe: Optional[bool] = False
    id: Optional[str] = None


class ExtendedTextMessage(BaseModel):
    model_config = ConfigDict(extra="ignore")

    text: Optional[str] = None


class MessageContent(BaseModel):
    model_config = ConfigDict(extra="ignore")

    conversation: Optional[str] = None
    extendedTextMessage: Optional[ExtendedTextMessage] = None

    @property
    def text(self) -> Optional[str]:
        if self.conversation:
            return self.conversation
        if self.extendedTextMessage and self.extendedTextMessage.text:
            return self.extendedTextMessage.text
        return None


class MessageData(BaseModel):
    model_config = ConfigDict(extra="ignore")

    key: Optional[MessageKey] = None
    message: Optional[MessageContent] = None
    pushName: Optional[str] = None


class InboundMessage(BaseModel):
    from_me: bool = False
    remote_jid: Optional[str] = None
    text: Optional[str] = None
    instance: Optional[str] = None
    push_name: Optional[str] = None


class EvolutionWebhookPayload(BaseModel):
    """MESSAGES_UPSERT event from Evolution API v2 (and older flat shapes)."""

    model_config = ConfigDict(extra="ignore")

    event: Optional[str] = None
    instance: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("instance", "owner", "instanceName"),
    )
    data: Optional[MessageData] = None
    key: Optional[MessageKey] = None
    message: Optional[MessageContent] = None
    remoteJid: Optional[str] = None
    text: Optional[str] = None
    pushName: Optional[str] = None
    senderName: Optional[str] = None

    def to_inbound(self) -> InboundMessage:
        data = self.data or MessageData()
        from_me = bool((data.key and data.key.fromMe) or (self.key and self.key.fromMe))
        remote_jid = (
            (data.key.remoteJid if data.key else None) or (self.key.remoteJid if self.key else None) or self.remoteJid
        )
        text = (data.message.text if data.message else None) or (self.message.text if self.message else None) or self.text
        push_name = data.pushName or self.pushName or self.senderName

        return InboundMessage(
            from_me=from_me,
            remote_jid=remote_jid,
            text=text,
            instance=self.instance,
            push_name=push_name,
        )


class WebhookResponse(BaseModel):
    success: bool = True
    buffered: Optional[bool] = None
    ignored: Optional[bool] = None
    reason: Optional[str] = None
    contact_id: Optional[UUID] = None
    conversation_id: Optional[UUID] = None
    buffer_key: Optional[str] = None
