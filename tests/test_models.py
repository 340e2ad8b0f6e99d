"""Tests for the Message record, normalization, hashing and error types."""
import pytest

from models.errors import MessageValidationError, TransportError
from models.hashing import HASH_FIELDS, hash_document, hash_projection
from models.message import (
    Direction, Message, MessageType, Mime, Priority, SendMode, State, is_html,
)


def _message(**overrides) -> Message:
    data = {"from": "a@x.com", "to": "b@x.com", "body": "hi"}
    data.update(overrides)
    return Message(**data)


# ──────────────────────────────────────────────────────────────
#  Normalization
# ──────────────────────────────────────────────────────────────

class TestPrepare:
    def test_minimal_message_is_normalized(self):
        message = _message().prepare()
        assert message.to == ["b@x.com"]
        assert message.type == MessageType.EMAIL
        assert message.queue_name == "email"
        assert message.mime == Mime.TEXT
        assert message.direction == Direction.OUTBOUND
        assert message.state == State.UNKNOWN
        assert message.mode == SendMode.PUSH
        assert message.priority == Priority.NORMAL
        assert message.hash and len(message.hash) == 40

    def test_single_cc_and_bcc_become_lists(self):
        message = _message(cc="c@x.com", bcc="d@x.com")
        assert message.cc == ["c@x.com"]
        assert message.bcc == ["d@x.com"]

    def test_queue_name_follows_type(self):
        assert _message(type="SMS").prepare().queue_name == "sms"
        assert _message(type="PUSH").prepare().queue_name == "push"

    def test_explicit_queue_name_kept(self):
        assert _message(queueName="bulk").prepare().queue_name == "bulk"

    def test_html_body_sets_html_mime(self):
        assert _message(body="<p>hi</p>").prepare().mime == Mime.HTML

    def test_doctype_body_sets_html_mime(self):
        assert _message(body="<!DOCTYPE html><title>x</title>").prepare().mime == Mime.HTML

    def test_angle_brackets_are_not_html(self):
        assert _message(body="a < b and c > d").prepare().mime == Mime.TEXT

    def test_explicit_mime_not_overwritten(self):
        message = _message(body="<p>hi</p>", mime="text/plain").prepare()
        assert message.mime == Mime.TEXT

    def test_existing_hash_kept(self):
        assert _message(hash="custom").prepare().hash == "custom"

    def test_blank_hash_recomputed(self):
        assert _message(hash="  ").prepare().hash != "  "

    @pytest.mark.parametrize("overrides,missing", [
        ({"from": None}, ["from"]),
        ({"to": []}, ["to"]),
        ({"to": [""]}, ["to"]),
        ({"body": "   "}, ["body"]),
        ({"from": "", "body": None}, ["from", "body"]),
    ])
    def test_missing_required_fields(self, overrides, missing):
        with pytest.raises(MessageValidationError) as exc_info:
            _message(**overrides).prepare()
        assert exc_info.value.fields == missing


class TestHtmlDetection:
    def test_known_tags(self):
        assert is_html("Hello<br/>world")
        assert is_html("<TABLE><tr><td>1</td></tr></TABLE>")

    def test_plain_text(self):
        assert not is_html("plain text")
        assert not is_html("")
        assert not is_html(None)

    def test_unknown_tag(self):
        assert not is_html("<notatag>")


# ──────────────────────────────────────────────────────────────
#  Hashing
# ──────────────────────────────────────────────────────────────

class TestHash:
    def test_projection_uses_fixed_field_order(self):
        projection = hash_projection(_message().to_document())
        assert [name for name, _ in projection] == list(HASH_FIELDS)

    def test_fields_outside_projection_do_not_affect_hash(self):
        a = _message(subject="one", options={"x": 1}, cc="c@x.com").prepare()
        b = _message(subject="two", state="Delivered").prepare()
        assert a.hash == b.hash

    @pytest.mark.parametrize("overrides", [
        {"body": "hello"},
        {"priority": "high"},
        {"transport": "echo"},
        {"to": ["b@x.com", "c@x.com"]},
        {"type": "SMS"},
    ])
    def test_projected_fields_change_hash(self, overrides):
        assert _message().prepare().hash != _message(**overrides).prepare().hash

    def test_hash_is_deterministic(self):
        doc = _message().prepare().to_document()
        assert hash_document(doc) == hash_document(dict(doc))


# ──────────────────────────────────────────────────────────────
#  Outcome helpers & persisted form
# ──────────────────────────────────────────────────────────────

class TestMessageOutcome:
    def test_mark_sent_defaults_to_delivered(self):
        message = _message()
        message.mark_sent({"message": "success"})
        assert message.is_sent
        assert message.state == State.DELIVERED
        assert message.failed_at is None

    def test_mark_sent_keeps_first_sent_at(self):
        message = _message()
        message.mark_sent({"message": "success"})
        first = message.sent_at
        message.mark_sent({"message": "again"}, "Queued")
        assert message.sent_at == first
        assert message.result == {"message": "again"}

    def test_mark_sent_uses_transport_state(self):
        message = _message()
        message.mark_sent({"state": "Queued"}, "Queued")
        assert message.state == State.QUEUED

    def test_mark_failed_leaves_sent_at_unset(self):
        message = _message()
        message.mark_failed({"code": "x"})
        assert message.failed_at is not None
        assert message.sent_at is None
        assert message.result == {"code": "x"}


class TestDocument:
    def test_document_uses_persisted_names(self):
        doc = _message(type="SMS", mode="Pull").prepare().to_document()
        assert doc["from"] == "a@x.com"
        assert doc["queueName"] == "sms"
        assert doc["sentAt"] is None
        assert doc["direction"] == "Outbound"
        assert doc["mode"] == "Pull"
        assert doc["type"] == "SMS"
        assert "sender" not in doc

    def test_from_document_restores_message(self):
        original = _message(subject="s", options={"a": 1}).prepare()
        restored = Message.from_document(original.to_document())
        assert restored.id == original.id
        assert restored.sender == "a@x.com"
        assert restored.hash == original.hash
        assert restored.options == {"a": 1}

    def test_python_attribute_names_accepted(self):
        message = Message(sender="a@x.com", to="b@x.com", body="hi", queue_name="q")
        assert message.sender == "a@x.com"
        assert message.queue_name == "q"


class TestTransportError:
    def test_to_result(self):
        error = TransportError("rejected", code="550", status=550)
        assert error.to_result() == {"code": "550", "message": "rejected", "status": 550}

    def test_from_exception_normalizes(self):
        error = TransportError.from_exception(RuntimeError("boom"), "smtp")
        assert error.code == "RuntimeError"
        assert str(error) == "boom"
        assert error.status is None
        assert error.transport == "smtp"

    def test_from_exception_passes_through(self):
        error = TransportError("x")
        assert TransportError.from_exception(error) is error
