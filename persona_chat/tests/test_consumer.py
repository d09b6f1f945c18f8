from datetime import datetime, timedelta, timezone

import httpx
import pytest

from persona_chat.chat.consumer import StreamConsumer
from persona_chat.domain.conversation import StoredMessage
from persona_chat.domain.exceptions import StreamError, StreamInFlight, StreamTransportError
from persona_chat.domain.stream import MessagePart, StreamEvent


class MemoryStore:
    def __init__(self, fail=False):
        self.data = {}
        self.fail = fail

    def get(self, persona_id):
        return list(self.data.get(persona_id, []))

    def append(self, persona_id, message):
        if self.fail:
            return False
        self.data.setdefault(persona_id, []).append(message)
        return True

    def clear(self, persona_id):
        self.data.pop(persona_id, None)
        return True


class StepClock:
    def __init__(self, start=None, step=timedelta(seconds=1)):
        self.now = start or datetime(2024, 1, 1, tzinfo=timezone.utc)
        self.step = step

    def __call__(self):
        self.now += self.step
        return self.now


def _parts(*contents):
    total = len(contents)
    return [
        StreamEvent.of_part(MessagePart(id=f"p_{i}", index=i, total=total, content=c, is_complete=i == total - 1))
        for i, c in enumerate(contents)
    ]


def test_each_part_is_stored_as_it_arrives():
    store = MemoryStore()
    consumer = StreamConsumer(store, clock=StepClock())
    stored_counts = []

    result = consumer.consume(
        "hitesh",
        iter(_parts("a", "b") + [StreamEvent.completed()]),
        on_part=lambda m: stored_counts.append(len(store.get("hitesh"))),
    )

    assert stored_counts == [1, 2]
    assert result.ok
    assert [m.content for m in result.messages] == ["a", "b"]
    assert all(m.sender == "assistant" for m in result.messages)
    assert result.messages[1].part_index == 1
    assert result.messages[1].total_parts == 2


def test_complete_callback_and_events_after_complete_ignored():
    store = MemoryStore()
    done = []
    result = StreamConsumer(store).consume(
        "hitesh",
        iter(_parts("a") + [StreamEvent.completed()] + _parts("late")),
        on_complete=lambda: done.append(True),
    )
    assert done == [True]
    assert [m.content for m in store.get("hitesh")] == ["a"]
    assert result.completed


def test_error_event_keeps_delivered_messages():
    store = MemoryStore()
    errors = []
    events = _parts("a", "b")[:1] + [StreamEvent.failed("STREAM_ERROR", "Failed to stream message parts")]
    result = StreamConsumer(store).consume("hitesh", iter(events), on_error=errors.append)
    assert not result.completed
    assert isinstance(result.error, StreamError)
    assert result.error.code == "STREAM_ERROR"
    assert errors == [result.error]
    assert [m.content for m in store.get("hitesh")] == ["a"]
    with pytest.raises(StreamError):
        result.raise_for_error()


def test_transport_failure_mid_stream():
    def events():
        yield from _parts("a", "b")[:1]
        raise httpx.ReadError("connection reset")

    store = MemoryStore()
    result = StreamConsumer(store).consume("hitesh", events())
    assert isinstance(result.error, StreamTransportError)
    assert result.error.code == "STREAM_READ_ERROR"
    assert "connection reset" in result.error.details
    assert len(store.get("hitesh")) == 1


def test_stream_closed_without_completion_is_transport_error():
    result = StreamConsumer(MemoryStore()).consume("hitesh", iter(_parts("a", "b")))
    assert isinstance(result.error, StreamTransportError)
    assert len(result.messages) == 2


def test_second_stream_for_same_persona_is_rejected():
    store = MemoryStore()
    consumer = StreamConsumer(store)
    nested = {}

    def on_part(message):
        with pytest.raises(StreamInFlight):
            consumer.consume("hitesh", iter([StreamEvent.completed()]))
        nested["other"] = consumer.consume("piyush", iter([StreamEvent.completed()]))

    result = consumer.consume("hitesh", iter(_parts("a") + [StreamEvent.completed()]), on_part=on_part)
    assert result.ok
    assert nested["other"].ok
    assert not consumer.is_active("hitesh")


def test_timestamps_never_go_backwards():
    store = MemoryStore()
    later = datetime(2030, 1, 1, tzinfo=timezone.utc)
    store.data["hitesh"] = [
        StoredMessage(id="u1", persona_id="hitesh", sender="user", content="hi", timestamp="2030-01-01T00:00:00Z")
    ]
    clock = StepClock(start=datetime(2020, 1, 1, tzinfo=timezone.utc))
    StreamConsumer(store, clock=clock).consume("hitesh", iter(_parts("a", "b") + [StreamEvent.completed()]))
    stamps = [m.created_at for m in store.get("hitesh")]
    assert stamps == sorted(stamps)
    assert stamps[1] >= later


def test_storage_failures_are_reported_not_raised():
    result = StreamConsumer(MemoryStore(fail=True)).consume("hitesh", iter(_parts("a") + [StreamEvent.completed()]))
    assert result.completed
    assert len(result.storage_failures) == 1


def test_naive_stored_timestamp_is_treated_as_utc():
    store = MemoryStore()
    store.data["hitesh"] = [
        StoredMessage(id="u1", persona_id="hitesh", sender="user", content="hi", timestamp="2030-01-01T00:00:00")
    ]
    clock = StepClock(start=datetime(2020, 1, 1, tzinfo=timezone.utc))

    result = StreamConsumer(store, clock=clock).consume("hitesh", iter(_parts("a") + [StreamEvent.completed()]))

    assert result.ok
    assert result.messages[0].created_at == datetime(2030, 1, 1, tzinfo=timezone.utc)
