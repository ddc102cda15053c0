"""
Message model and its storage record shape.

Stored record: ``{sender, text?, attachmentRef?, timestamp}`` with exactly one
of ``text`` / ``attachmentRef`` present. ``timestamp`` is epoch milliseconds
assigned by the log at append time.
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from atme.errors import InvalidMessage

# Older clients wrote picture messages under this key.
LEGACY_ATTACHMENT_KEY = "imageURL"


class Message(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: Optional[str] = None
    sender: str
    text: Optional[str] = None
    attachment_ref: Optional[str] = Field(default=None, alias="attachmentRef")
    timestamp: Optional[int] = None

    @model_validator(mode="after")
    def _check_body(self) -> "Message":
        if not self.sender:
            raise ValueError("sender is required")
        if self.text is not None and not self.text:
            raise ValueError("text must not be empty")
        if self.attachment_ref is not None and not self.attachment_ref:
            raise ValueError("attachmentRef must not be empty")
        if (self.text is None) == (self.attachment_ref is None):
            raise ValueError("exactly one of text or attachmentRef is required")
        return self

    @property
    def is_attachment(self) -> bool:
        return self.attachment_ref is not None

    @classmethod
    def compose(
        cls, sender: str, text: Optional[str] = None, attachment_ref: Optional[str] = None,
    ) -> "Message":
        """Build an unsent message, raising InvalidMessage instead of a pydantic error."""
        try:
            return cls(sender=sender, text=text, attachment_ref=attachment_ref)
        except ValidationError as e:
            reason = e.errors()[0].get("msg", str(e)) if e.errors() else str(e)
            raise InvalidMessage(f"Invalid message: {reason}", details={"sender": sender})

    @classmethod
    def from_record(cls, message_id: str, raw: Any) -> Optional["Message"]:
        """Parse a stored record. Returns None if the record is malformed."""
        if not isinstance(raw, dict):
            return None
        data = dict(raw)
        if "attachmentRef" not in data and LEGACY_ATTACHMENT_KEY in data:
            data["attachmentRef"] = data.pop(LEGACY_ATTACHMENT_KEY)
        data["id"] = message_id
        try:
            message = cls.model_validate(data)
        except ValidationError:
            return None
        if message.timestamp is None:
            return None
        return message

    def to_record(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, exclude={"id"})
