from pydantic import BaseModel, ConfigDict, Field


class ButtonReply(BaseModel):
    id: str = Field(..., examples=["rate:7:5"])
    title: str = ""


class Interactive(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: str = ""
    button_reply: ButtonReply | None = None


class InboundMessage(BaseModel):
    """
    A message a recipient sent back to us. Survey answers arrive as
    interactive button replies.
    """

    model_config = ConfigDict(extra="ignore")

    sender: str = Field(..., alias="from", examples=["15551234567"])
    id: str = ""
    type: str = ""
    interactive: Interactive | None = None

    @property
    def reply_id(self) -> str | None:
        if self.interactive is None or self.interactive.button_reply is None:
            return None
        return self.interactive.button_reply.id


class DeliveryStatus(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    status: str
    recipient_id: str = ""


class ChangeValue(BaseModel):
    model_config = ConfigDict(extra="ignore")

    messages: list[InboundMessage] = Field(default_factory=list)
    statuses: list[DeliveryStatus] = Field(default_factory=list)


class Change(BaseModel):
    model_config = ConfigDict(extra="ignore")

    field: str = ""
    value: ChangeValue


class Entry(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str = ""
    changes: list[Change] = Field(default_factory=list)


class MessagingWebhookPayload(BaseModel):
    """
    Envelope posted by the messaging provider for replies and delivery
    status updates.
    """

    model_config = ConfigDict(extra="ignore")

    object: str = ""
    entry: list[Entry] = Field(default_factory=list)


class MessagingWebhookAck(BaseModel):
    status: str = Field("success", examples=["success"])
    ratings_recorded: int = Field(0, examples=[1])
    statuses_seen: int = Field(0, examples=[2])
