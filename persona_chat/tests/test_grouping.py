from datetime import datetime, timedelta, timezone

from persona_chat.chat.grouping import group_messages, has_open_fence, should_merge, Bubble
from persona_chat.domain.conversation import StoredMessage


BASE = datetime(2024, 3, 1, 10, 0, tzinfo=timezone.utc)


def _msg(i, content, sender="assistant", seconds=0):
    ts = (BASE + timedelta(seconds=seconds)).isoformat().replace("+00:00", "Z")
    return StoredMessage(id=f"m{i}", persona_id="hitesh", sender=sender, content=content, timestamp=ts)


def test_empty_list():
    assert group_messages([]) == []


def test_same_sender_within_window_merges_with_blank_line():
    bubbles = group_messages([_msg(1, "Haanji!"), _msg(2, "Dekho bhai", seconds=30), _msg(3, "Chaliye", seconds=60)])
    assert len(bubbles) == 1
    assert bubbles[0].content == "Haanji!\n\nDekho bhai\n\nChaliye"
    assert bubbles[0].timestamp == _msg(3, "", seconds=60).timestamp
    assert bubbles[0].message_ids == ["m1", "m2", "m3"]
    assert bubbles[0].id == "m1"


def test_different_senders_never_merge():
    bubbles = group_messages([_msg(1, "hi", sender="user"), _msg(2, "Haanji", seconds=1)])
    assert [b.sender for b in bubbles] == ["user", "assistant"]


def test_three_minutes_apart_not_merged():
    bubbles = group_messages([_msg(1, "first"), _msg(2, "later", seconds=180)])
    assert len(bubbles) == 2


def test_exactly_two_minutes_still_merges():
    bubbles = group_messages([_msg(1, "first"), _msg(2, "second", seconds=120)])
    assert len(bubbles) == 1


def test_open_fence_forces_merge_until_closed():
    msgs = [
        _msg(1, "```python"),
        _msg(2, "print('hi')", seconds=200),
        _msg(3, "```", seconds=400),
        _msg(4, "Samjhe?", seconds=700),
    ]
    bubbles = group_messages(msgs)
    assert [b.content for b in bubbles] == ["```python\n\nprint('hi')\n\n```", "Samjhe?"]


def test_open_fence_does_not_cross_senders():
    bubbles = group_messages([_msg(1, "```js"), _msg(2, "what?", sender="user", seconds=5)])
    assert len(bubbles) == 2


def test_lone_closing_fence_always_merges():
    msgs = [_msg(1, "```\ncode here"), _msg(2, "```", seconds=500)]
    bubbles = group_messages(msgs)
    assert len(bubbles) == 1
    assert not has_open_fence(bubbles[0].content)


def test_two_complete_code_blocks_are_not_merged():
    msgs = [_msg(1, "```\na = 1\n```"), _msg(2, "```\nb = 2\n```", seconds=5)]
    assert len(group_messages(msgs)) == 2


def test_text_after_code_block_merges():
    msgs = [_msg(1, "```\na = 1\n```"), _msg(2, "Ye dekho", seconds=5)]
    assert len(group_messages(msgs)) == 1


def test_grouping_does_not_mutate_input():
    msgs = [_msg(1, "a"), _msg(2, "b", seconds=1)]
    group_messages(msgs)
    assert [m.content for m in msgs] == ["a", "b"]


def test_should_merge_compares_against_latest_bubble_timestamp():
    bubble = Bubble.start(_msg(1, "a"))
    bubble.absorb(_msg(2, "b", seconds=100))
    assert should_merge(bubble, _msg(3, "c", seconds=200))


def test_naive_and_aware_timestamps_compare_as_utc():
    aware = _msg(1, "first", seconds=0)
    naive = StoredMessage(
        id="m2",
        persona_id="hitesh",
        sender="assistant",
        content="second",
        timestamp=(BASE + timedelta(seconds=30)).replace(tzinfo=None).isoformat(),
    )
    assert len(group_messages([aware, naive])) == 1
