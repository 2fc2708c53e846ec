"""
Conversion between stored and structured messages, title derivation and
summary filtering. Shared by the server and the client; must not touch
settings or the database.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Iterable, List, Optional, Sequence, TypeVar, Union

from pydantic import ValidationError

from ..schemas.message import Attachment, MessageResponse

logger = logging.getLogger(__name__)

TITLE_MAX_LENGTH = 50
DEFAULT_TITLE = "Untitled Conversation"


@dataclass(frozen=True)
class AttachmentPresent:
    value: Attachment


@dataclass(frozen=True)
class AttachmentAbsent:
    pass


@dataclass(frozen=True)
class AttachmentMalformed:
    raw: str
    reason: str


AttachmentState = Union[AttachmentPresent, AttachmentAbsent, AttachmentMalformed]


def serialize_attachment(attachment: Optional[Attachment]) -> Optional[str]:
    """Serialize an attachment for storage. No attachment stores NULL."""
    if attachment is None:
        return None
    return attachment.model_dump_json(by_alias=True, exclude_none=True)


def parse_attachment(blob: Optional[str]) -> AttachmentState:
    """Parse a stored attachment blob without ever raising."""
    if blob is None or not blob.strip():
        return AttachmentAbsent()

    try:
        data = json.loads(blob)
    except ValueError as e:
        return AttachmentMalformed(raw=blob, reason=f"invalid JSON: {e}")

    if data is None:
        return AttachmentAbsent()
    if not isinstance(data, dict):
        return AttachmentMalformed(raw=blob, reason=f"expected an object, got {type(data).__name__}")

    try:
        return AttachmentPresent(Attachment.model_validate(data))
    except ValidationError as e:
        return AttachmentMalformed(raw=blob, reason=str(e))


def attachment_or_none(state: AttachmentState) -> Optional[Attachment]:
    if isinstance(state, AttachmentPresent):
        return state.value
    return None


def message_from_record(record: Any) -> MessageResponse:
    """
    Build the structured message for a stored row.

    An unreadable attachment is dropped and the text kept, so one bad blob
    never fails a whole conversation load.
    """
    state = parse_attachment(record.attachment_blob)
    if isinstance(state, AttachmentMalformed):
        logger.debug(
            "Dropping malformed attachment on message %s: %s",
            getattr(record, "id", None), state.reason
        )

    return MessageResponse(
        role=record.role,
        content=record.content or "",
        attachment=attachment_or_none(state),
        tag=record.tag,
        created_at=record.created_at
    )


def _field(message: Any, name: str) -> Any:
    if isinstance(message, dict):
        return message.get(name)
    return getattr(message, name, None)


def derive_title(messages: Iterable[Any]) -> str:
    """
    Title from the first user message, truncated to 50 characters with an
    ellipsis. Falls back to a fixed placeholder when no user message exists.
    """
    for message in messages:
        if _field(message, "role") != "user":
            continue
        content = _field(message, "content") or ""
        if len(content) > TITLE_MAX_LENGTH:
            return content[:TITLE_MAX_LENGTH] + "..."
        return content or DEFAULT_TITLE
    return DEFAULT_TITLE


T = TypeVar("T")


def filter_conversations(summaries: Sequence[T], query: Optional[str]) -> List[T]:
    """Case-insensitive substring match of ``query`` against each title."""
    if not query:
        return list(summaries)

    needle = query.lower()
    return [s for s in summaries if needle in (_field(s, "title") or "").lower()]
