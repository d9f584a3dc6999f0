from __future__ import annotations

import asyncio

import pytest

from solo_rpg.core.tokens import estimate_tokens
from solo_rpg.history import HistoryWindow


def _text(tag: str, words: int) -> str:
    return " ".join([tag] * words)


class _Recorder:
    def __init__(self, replies: list[str | Exception] | None = None) -> None:
        self.replies = list(replies or [])
        self.calls: list[list[str]] = []

    async def __call__(self, chunks: list[str]) -> str:
        self.calls.append(list(chunks))
        if self.replies:
            reply = self.replies.pop(0)
            if isinstance(reply, Exception):
                raise reply
            return reply
        return f"summary {len(self.calls)}"


def test_invalid_budgets_raise() -> None:
    with pytest.raises(ValueError):
        HistoryWindow(token_budget=0)
    with pytest.raises(ValueError):
        HistoryWindow(chunk_tokens=-1)


def test_append_does_not_compact() -> None:
    w = HistoryWindow(token_budget=10)
    w.append_turn("Sung Jinwoo", _text("a", 50))
    w.append_turn("Narrator", _text("b", 50))

    assert len(w.entries) == 2
    assert w.total_tokens == 2 * estimate_tokens(_text("a", 50))


async def test_compaction_brings_window_under_budget() -> None:
    w = HistoryWindow(token_budget=20_000, chunk_tokens=2_500)
    for i in range(25):
        w.append_turn("Narrator" if i % 2 else "Sung Jinwoo", _text(f"t{i}", 750))
    per_entry = estimate_tokens(_text("t0", 750))
    assert w.total_tokens == 25 * per_entry
    assert w.total_tokens > 20_000

    summarize = _Recorder()
    created = await w.compact_if_needed(summarize)

    assert w.total_tokens <= 20_000
    # The kept side is the newest contiguous suffix.
    assert [e.text for e in w.entries] == [_text(f"t{i}", 750) for i in range(5, 25)]
    # Evicted entries are summarized oldest first, in chunks of >= chunk_tokens.
    assert summarize.calls == [
        [_text("t0", 750), _text("t1", 750), _text("t2", 750)],
        [_text("t3", 750), _text("t4", 750)],
    ]
    assert [s.text for s in created] == ["summary 1", "summary 2"]
    assert [s.text for s in w.summaries] == ["summary 1", "summary 2"]
    assert all(s.role == "Summary" and not s.degraded for s in w.summaries)


async def test_compaction_is_a_noop_under_budget() -> None:
    w = HistoryWindow(token_budget=100)
    w.append_turn("Narrator", "short")

    summarize = _Recorder()
    assert await w.compact_if_needed(summarize) == []
    assert summarize.calls == []


async def test_oversized_newest_entry_is_kept() -> None:
    w = HistoryWindow(token_budget=100, chunk_tokens=50)
    big = _text("big", 200)
    w.append_turn("Narrator", big)

    summarize = _Recorder()
    assert await w.compact_if_needed(summarize) == []
    assert [e.text for e in w.entries] == [big]

    w.append_turn("Sung Jinwoo", "look around")
    created = await w.compact_if_needed(summarize)

    assert [e.text for e in w.entries] == ["look around"]
    assert len(created) == 1
    assert summarize.calls == [[big]]


async def test_cancelled_compaction_keeps_unsummarized_entries() -> None:
    w = HistoryWindow(token_budget=10, chunk_tokens=1)
    texts = [_text("a", 10), _text("b", 10), "new"]
    for text in texts:
        w.append_turn("Narrator", text)

    gate = asyncio.Event()
    calls: list[list[str]] = []

    async def summarize(chunks: list[str]) -> str:
        calls.append(list(chunks))
        if len(calls) > 1:
            await gate.wait()
        return "first"

    task = asyncio.create_task(w.compact_if_needed(summarize))
    while len(calls) < 2:
        await asyncio.sleep(0)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert [s.text for s in w.summaries] == ["first"]
    assert [e.text for e in w.entries] == texts[1:]


async def test_summarizer_failure_is_retried_once() -> None:
    w = HistoryWindow(token_budget=10, chunk_tokens=1_000)
    w.append_turn("Narrator", _text("old", 20))
    w.append_turn("Narrator", "new")

    summarize = _Recorder([RuntimeError("rate limited"), "The hunter woke up."])
    created = await w.compact_if_needed(summarize)

    assert len(summarize.calls) == 2
    assert [(s.text, s.degraded) for s in created] == [("The hunter woke up.", False)]


async def test_summarizer_failing_twice_keeps_degraded_raw_text() -> None:
    w = HistoryWindow(token_budget=10, chunk_tokens=1_000)
    old_a = _text("a", 10)
    old_b = _text("b", 10)
    w.append_turn("Sung Jinwoo", old_a)
    w.append_turn("Narrator", old_b)
    w.append_turn("Narrator", "new")

    summarize = _Recorder([RuntimeError("down"), ""])
    created = await w.compact_if_needed(summarize)

    assert len(summarize.calls) == 2
    assert len(created) == 1
    assert created[0].degraded
    assert created[0].text == f"{old_a}\n{old_b}"
    assert [e.text for e in w.entries] == ["new"]


def test_recent_entries_is_read_only() -> None:
    w = HistoryWindow(token_budget=1_000)
    for i in range(4):
        w.append_turn("Narrator", _text(f"e{i}", 10))
    per_entry = estimate_tokens(_text("e0", 10))

    recent = w.recent_entries(per_entry * 2)

    assert [e.text for e in recent] == [_text("e2", 10), _text("e3", 10)]
    assert len(w.entries) == 4
    assert w.render_recent(per_entry).startswith("Narrator: e3")


def test_recent_entries_leaves_out_oversized_newest_entry() -> None:
    w = HistoryWindow(token_budget=100)
    big = _text("big", 200)
    w.append_turn("Narrator", big)

    assert w.recent_entries() == []
    assert w.render_recent() == ""
    assert [e.text for e in w.entries] == [big]


async def test_snapshot_round_trip_and_clear() -> None:
    w = HistoryWindow(token_budget=10)
    w.append_turn("Narrator", _text("old", 20))
    w.append_turn("Narrator", "new")
    await w.compact_if_needed(_Recorder())

    snap = w.to_snapshot()
    restored = HistoryWindow(token_budget=10)
    restored.load_snapshot(snap)

    assert restored.entries == w.entries
    assert restored.summaries == w.summaries
    assert restored.render_summaries() == "Summary: summary 1"

    restored.load_snapshot(None)
    assert restored.entries == []
    assert restored.summaries == []
