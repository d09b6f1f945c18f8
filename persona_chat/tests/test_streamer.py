import random
from datetime import datetime, timedelta, timezone

import pytest

from persona_chat.chat.consumer import StreamConsumer
from persona_chat.chat.streamer import CompletionStreamer, DelayPolicy
from persona_chat.domain.exceptions import NetworkError, UpstreamQuotaExceeded, UpstreamRateLimited
from persona_chat.domain.models import ChatChoice, ChatMessage, ChatResult


class FakeProvider:
    name = "fake"

    def __init__(self, reply="", error=None):
        self.reply = reply
        self.error = error
        self.requests = []

    def chat(self, req):
        self.requests.append(req)
        if self.error:
            raise self.error
        msg = ChatMessage(role="assistant", content=self.reply)
        return ChatResult(provider="fake", model=req.model, choices=[ChatChoice(index=0, message=msg)])


class FakeClock:
    def __init__(self):
        self.now = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
        self.sleeps = []

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += timedelta(seconds=seconds)

    def __call__(self):
        return self.now


class MemoryStore:
    def __init__(self):
        self.data = {}

    def get(self, persona_id):
        return list(self.data.get(persona_id, []))

    def append(self, persona_id, message):
        self.data.setdefault(persona_id, []).append(message)
        return True

    def clear(self, persona_id):
        self.data.pop(persona_id, None)
        return True


def _prompt():
    return [ChatMessage(role="system", content="sys"), ChatMessage(role="user", content="hi")]


def test_delay_policy_first_part_has_no_delay():
    policy = DelayPolicy(0.5, 1.5, rng=random.Random(3))
    assert policy.delay_for(0) == 0.0
    for i in range(1, 200):
        assert 0.5 <= policy.delay_for(i) < 1.5


def test_delay_policy_rejects_inverted_range():
    with pytest.raises(ValueError):
        DelayPolicy(2.0, 1.0)


def test_stream_emits_parts_in_order_then_complete():
    clock = FakeClock()
    streamer = CompletionStreamer(FakeProvider("a\nb\nc"), DelayPolicy(0.5, 1.5, rng=random.Random(1)), sleep=clock.sleep)
    events = list(streamer.stream(_prompt()))
    assert [e.kind for e in events] == ["part", "part", "part", "complete"]
    assert [e.part.index for e in events[:-1]] == [0, 1, 2]
    assert len(clock.sleeps) == 2
    assert all(0.5 <= s < 1.5 for s in clock.sleeps)


def test_stream_sends_assembled_prompt_once():
    provider = FakeProvider("ok")
    streamer = CompletionStreamer(provider, DelayPolicy.none(), model="persona-chat", temperature=0.2, max_tokens=50)
    list(streamer.stream(_prompt()))
    assert len(provider.requests) == 1
    req = provider.requests[0]
    assert [m.role for m in req.messages] == ["system", "user"]
    assert req.model == "persona-chat"
    assert req.temperature == 0.2
    assert req.max_tokens == 50


def test_hitesh_scenario_three_paced_parts():
    clock = FakeClock()
    provider = FakeProvider("Haanji!\nDekho bhai\nChaliye")
    streamer = CompletionStreamer(provider, DelayPolicy(0.5, 1.5, rng=random.Random(42)), sleep=clock.sleep)
    store = MemoryStore()
    consumer = StreamConsumer(store, clock=clock)

    result = consumer.consume("hitesh", streamer.stream(_prompt(), persona_id="hitesh"))

    assert result.ok
    messages = store.get("hitesh")
    assert [m.content for m in messages] == ["Haanji!", "Dekho bhai", "Chaliye"]
    assert [m.part_index for m in messages] == [0, 1, 2]
    assert all(m.total_parts == 3 for m in messages)
    stamps = [m.created_at for m in messages]
    assert stamps[0] < stamps[1] < stamps[2]
    assert all(b - a >= timedelta(milliseconds=500) for a, b in zip(stamps, stamps[1:]))


def test_hitesh_scenario_last_part_marked_complete():
    streamer = CompletionStreamer(FakeProvider("Haanji!\nDekho bhai\nChaliye"), DelayPolicy.none())
    parts = [e.part for e in streamer.stream(_prompt()) if e.kind == "part"]
    assert [p.is_complete for p in parts] == [False, False, True]


def test_quota_and_rate_limit_errors_propagate():
    quota = UpstreamQuotaExceeded(code="QUOTA_EXCEEDED", message="quota", http_status=429)
    streamer = CompletionStreamer(FakeProvider(error=quota), DelayPolicy.none())
    with pytest.raises(UpstreamQuotaExceeded):
        streamer.stream(_prompt())

    limited = UpstreamRateLimited(code="RATE_LIMIT", message="slow down", http_status=429)
    streamer = CompletionStreamer(FakeProvider(error=limited), DelayPolicy.none())
    with pytest.raises(UpstreamRateLimited):
        streamer.stream(_prompt())


def test_other_completion_failure_becomes_terminal_error_event():
    timeout = NetworkError(code="TIMEOUT_ERROR", message="Completion request timed out", http_status=504)
    streamer = CompletionStreamer(FakeProvider(error=timeout), DelayPolicy.none())
    events = list(streamer.stream(_prompt()))
    assert len(events) == 1
    assert events[0].kind == "error"
    assert events[0].error.code == "TIMEOUT_ERROR"


def test_unexpected_failure_becomes_terminal_error_event():
    streamer = CompletionStreamer(FakeProvider(error=RuntimeError("boom")), DelayPolicy.none())
    events = list(streamer.stream(_prompt()))
    assert [e.kind for e in events] == ["error"]
    assert events[0].error.code == "CHAT_PROCESSING_ERROR"
    assert events[0].error.details == "boom"


def test_failure_while_pacing_keeps_emitted_parts_and_ends_with_error():
    calls = []

    def broken_sleep(seconds):
        calls.append(seconds)
        if len(calls) == 2:
            raise RuntimeError("timer failed")

    streamer = CompletionStreamer(FakeProvider("one\ntwo\nthree"), DelayPolicy(0.5, 0.5), sleep=broken_sleep)
    events = list(streamer.stream(_prompt()))
    assert [e.kind for e in events] == ["part", "part", "error"]
    assert [e.part.content for e in events[:2]] == ["one", "two"]
    assert events[-1].error.code == "STREAM_ERROR"


def test_closing_stream_early_stops_emission():
    clock = FakeClock()
    streamer = CompletionStreamer(FakeProvider("one\ntwo\nthree"), DelayPolicy(1.0, 1.0), sleep=clock.sleep)
    events = streamer.stream(_prompt())
    first = next(events)
    assert first.part.content == "one"
    events.close()
    assert clock.sleeps == []
