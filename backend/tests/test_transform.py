"""
Tests for message conversion, title derivation and summary filtering.
"""

from types import SimpleNamespace

from lisa.schemas.conversation import ConversationSummary
from lisa.schemas.message import Attachment, MessageIn
from lisa.services.transform import (
    DEFAULT_TITLE,
    AttachmentAbsent,
    AttachmentMalformed,
    AttachmentPresent,
    attachment_or_none,
    derive_title,
    filter_conversations,
    message_from_record,
    parse_attachment,
    serialize_attachment,
)


def _record(**kwargs):
    fields = {"id": 1, "role": "assistant", "content": "text", "attachment_blob": None, "tag": None, "created_at": None}
    fields.update(kwargs)
    return SimpleNamespace(**fields)


class TestDeriveTitle:
    def test_first_user_message(self):
        messages = [
            MessageIn(role="assistant", content="Welcome"),
            MessageIn(role="user", content="Hello"),
            MessageIn(role="user", content="Second"),
        ]
        assert derive_title(messages) == "Hello"

    def test_long_message_is_truncated(self):
        text = "x" * 60
        assert derive_title([{"role": "user", "content": text}]) == "x" * 50 + "..."

    def test_exactly_fifty_characters_kept(self):
        text = "y" * 50
        assert derive_title([{"role": "user", "content": text}]) == text

    def test_no_user_message(self):
        assert derive_title([MessageIn(role="assistant", content="Hi")]) == DEFAULT_TITLE
        assert derive_title([]) == DEFAULT_TITLE

    def test_empty_user_message(self):
        assert derive_title([MessageIn(role="user", content="")]) == DEFAULT_TITLE


class TestAttachments:
    def test_none_serializes_to_null(self):
        assert serialize_attachment(None) is None

    def test_serialized_attachment_parses_back(self):
        attachment = Attachment(name="alerter", display_name="Alerter", filename="a.jpg")
        blob = serialize_attachment(attachment)

        assert '"displayName"' in blob
        assert "imageUrl" not in blob
        assert parse_attachment(blob) == AttachmentPresent(attachment)

    def test_missing_blob_is_absent(self):
        assert parse_attachment(None) == AttachmentAbsent()
        assert parse_attachment("   ") == AttachmentAbsent()
        assert parse_attachment("null") == AttachmentAbsent()

    def test_invalid_json_is_malformed(self):
        state = parse_attachment("{not json")
        assert isinstance(state, AttachmentMalformed)
        assert state.raw == "{not json"
        assert attachment_or_none(state) is None

    def test_wrong_shape_is_malformed(self):
        assert isinstance(parse_attachment("[1, 2]"), AttachmentMalformed)
        assert isinstance(parse_attachment('{"displayName": "no name"}'), AttachmentMalformed)

    def test_legacy_snake_case_keys_accepted(self):
        state = parse_attachment('{"name": "alerter", "display_name": "Alerter"}')
        assert attachment_or_none(state).display_name == "Alerter"


class TestMessageFromRecord:
    def test_malformed_attachment_keeps_text(self):
        message = message_from_record(_record(content="Here it is", attachment_blob="{broken"))
        assert message.content == "Here it is"
        assert message.attachment is None

    def test_attachment_and_tag(self):
        blob = '{"name": "alerter", "type": "trainPart"}'
        message = message_from_record(_record(attachment_blob=blob, tag="personal"))
        assert message.attachment.name == "alerter"
        assert message.tag == "personal"

    def test_null_content(self):
        assert message_from_record(_record(content=None)).content == ""


class TestFilterConversations:
    def _summaries(self):
        return [
            ConversationSummary(thread_id="t1", title="Brake Inspection", message_count=2),
            ConversationSummary(thread_id="t2", title="Alerter wiring", message_count=4),
        ]

    def test_case_insensitive_substring(self):
        result = filter_conversations(self._summaries(), "BRAKE")
        assert [s.thread_id for s in result] == ["t1"]

    def test_empty_query_returns_all(self):
        assert len(filter_conversations(self._summaries(), "")) == 2
        assert len(filter_conversations(self._summaries(), None)) == 2

    def test_no_match(self):
        assert filter_conversations(self._summaries(), "pantograph") == []
