"""
Typed Gmail message resources.

Field names follow the Gmail REST API (camelCase) so upstream JSON decodes
without aliases. The fields Gmail is known to omit are declared without
defaults: a strict decode reports them as missing and the normalizer decides
how to fill them.
"""
from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from mailbridge.utils.encoding import decode_base64_bytes


class GmailModel(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")


class MessageHeader(GmailModel):
    name: str
    value: str = ""


class MessageBody(GmailModel):
    size: int = 0
    data: Optional[str] = None
    attachmentId: Optional[str] = None

    @property
    def kind(self) -> str:
        """One of "attachment", "data" or "empty"."""
        if self.attachmentId:
            return "attachment"
        if self.data:
            return "data"
        return "empty"

    def decoded_bytes(self) -> bytes:
        if self.kind != "data":
            return b""
        return decode_base64_bytes(self.data or "")


class MessagePart(GmailModel):
    partId: str = ""
    mimeType: str
    filename: str = ""
    headers: List[MessageHeader] = Field(default_factory=list)
    body: MessageBody = Field(default_factory=MessageBody)
    parts: List["MessagePart"] = Field(default_factory=list)

    def header(self, name: str) -> Optional[str]:
        wanted = name.lower()
        for item in self.headers:
            if item.name.lower() == wanted:
                return item.value
        return None


class MessagePayload(MessagePart):
    """Top-level part; Gmail sometimes drops its headers entirely."""

    headers: List[MessageHeader]


class GmailMessage(GmailModel):
    id: str
    threadId: str
    internalDate: str
    labelIds: List[str]
    snippet: str
    payload: MessagePayload
    historyId: Optional[str] = None
    sizeEstimate: int = 0


MessagePart.model_rebuild()
MessagePayload.model_rebuild()


class TokenResponse(BaseModel):
    """Body of a successful OAuth refresh_token grant."""

    model_config = ConfigDict(extra="ignore")

    access_token: str
    expires_in: int = Field(ge=0)
    token_type: str = ""
