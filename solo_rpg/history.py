from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable

from solo_rpg.api.models import ConversationEntry, ConversationSnapshot, SummaryEntry
from solo_rpg.config import DEFAULT_HISTORY_TOKEN_BUDGET, DEFAULT_SUMMARY_CHUNK_TOKENS

logger = logging.getLogger(__name__)

Summarizer = Callable[[list[str]], Awaitable[str]]


def _keep_start(entries: list[ConversationEntry], budget: int, *, keep_newest: bool = True) -> int:
    """Index where the newest contiguous suffix with total tokens <= budget begins.

    With `keep_newest` the newest entry is kept even when it alone is over budget.
    """

    running = 0
    start = len(entries)
    for idx in range(len(entries) - 1, -1, -1):
        running += entries[idx].tokens
        if running > budget:
            break
        start = idx
    if keep_newest and entries and start == len(entries):
        start = len(entries) - 1
    return start


class HistoryWindow:
    """Rolling turn log with a token budget and compacted summaries.

    Appending never compacts; `compact_if_needed` is the explicit async step that evicts
    the oldest entries into summaries.
    """

    def __init__(
        self,
        *,
        token_budget: int = DEFAULT_HISTORY_TOKEN_BUDGET,
        chunk_tokens: int = DEFAULT_SUMMARY_CHUNK_TOKENS,
    ) -> None:
        if token_budget <= 0:
            raise ValueError("token_budget must be positive")
        if chunk_tokens <= 0:
            raise ValueError("chunk_tokens must be positive")
        self.token_budget = token_budget
        self.chunk_tokens = chunk_tokens
        self._entries: list[ConversationEntry] = []
        self._summaries: list[SummaryEntry] = []

    @property
    def entries(self) -> list[ConversationEntry]:
        return list(self._entries)

    @property
    def summaries(self) -> list[SummaryEntry]:
        return list(self._summaries)

    @property
    def total_tokens(self) -> int:
        return sum(e.tokens for e in self._entries)

    def append_turn(self, role: str, text: str) -> ConversationEntry:
        entry = ConversationEntry.create(role=role, text=text)
        self._entries.append(entry)
        return entry

    def clear(self) -> None:
        self._entries = []
        self._summaries = []

    def recent_entries(self, budget: int | None = None) -> list[ConversationEntry]:
        """Newest entries whose cumulative cost fits the budget, oldest first.

        Unlike compaction, an oversized newest entry is left out. Does not touch the window.
        """

        limit = self.token_budget if budget is None else budget
        return self._entries[_keep_start(self._entries, limit, keep_newest=False):]

    def render_recent(self, budget: int | None = None) -> str:
        return "\n".join(f"{e.role}: {e.text}" for e in self.recent_entries(budget))

    def render_summaries(self) -> str:
        return "\n".join(f"{s.role}: {s.text}" for s in self._summaries)

    def _chunk(self, excess: list[ConversationEntry]) -> list[list[str]]:
        chunks: list[list[str]] = []
        chunk: list[str] = []
        chunk_total = 0
        for entry in excess:
            chunk.append(entry.text)
            chunk_total += entry.tokens
            if chunk_total >= self.chunk_tokens:
                chunks.append(chunk)
                chunk = []
                chunk_total = 0
        if chunk:
            chunks.append(chunk)
        return chunks

    async def _summarize_chunk(self, summarizer: Summarizer, chunk: list[str]) -> SummaryEntry:
        # One retry, then keep the raw text so evicted turns are never lost.
        for attempt in (1, 2):
            try:
                text = await summarizer(list(chunk))
            except Exception as e:
                logger.warning("summarizer failed (attempt %d/2): %s", attempt, e)
                continue
            if isinstance(text, str) and text.strip():
                return SummaryEntry.create(text=text.strip())
            logger.warning("summarizer returned empty text (attempt %d/2)", attempt)

        logger.error("keeping degraded summary for %d evicted entries", len(chunk))
        return SummaryEntry.create(text="\n".join(chunk), degraded=True)

    async def compact_if_needed(self, summarizer: Summarizer) -> list[SummaryEntry]:
        """Evict entries beyond the budget into summaries.

        Returns the summaries created by this call (empty when under budget).
        """

        if self.total_tokens <= self.token_budget:
            return []

        start = _keep_start(self._entries, self.token_budget)
        excess = self._entries[:start]
        if not excess:
            return []

        # Entries leave the live log only once their summary is stored.
        created: list[SummaryEntry] = []
        for chunk in self._chunk(excess):
            summary = await self._summarize_chunk(summarizer, chunk)
            self._summaries.append(summary)
            del self._entries[: len(chunk)]
            created.append(summary)

        logger.info(
            "history compacted: evicted=%d summaries=%d live_tokens=%d",
            len(excess),
            len(created),
            self.total_tokens,
        )
        return created

    def to_snapshot(self) -> ConversationSnapshot:
        return ConversationSnapshot(entries=list(self._entries), summaries=list(self._summaries))

    def load_snapshot(self, snapshot: ConversationSnapshot | None) -> None:
        self.clear()
        if snapshot is None:
            return
        self._entries = list(snapshot.entries)
        self._summaries = list(snapshot.summaries)
