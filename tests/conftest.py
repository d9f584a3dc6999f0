from __future__ import annotations

import asyncio
import os
from collections.abc import Generator
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import pytest

from solo_rpg.agents.base import GameServices
from solo_rpg.api.models import DialogueResult, NarrationResult, ValidationVerdict
from solo_rpg.config import GameSettings
from solo_rpg.core.context import NarrationContext
from solo_rpg.orchestrator import ActionOrchestrator


@pytest.fixture(scope="session", autouse=True)
def _load_dotenv_for_tests() -> None:
    """Load repo .env for local runs.

    This makes OPENAI_BASE_URL / OPENAI_MODEL available to the env-gated LLM test.
    In CI the file is only loaded when explicitly opted in with
    SOLO_RPG_LOAD_DOTENV_FOR_TESTS=1, so live tests stay skipped.
    """

    if os.environ.get("CI") and os.environ.get("SOLO_RPG_LOAD_DOTENV_FOR_TESTS") != "1":
        return

    env_path = Path(__file__).resolve().parents[1] / ".env"
    if env_path.exists():
        from dotenv import load_dotenv

        load_dotenv(dotenv_path=env_path, override=False)

    # If using a local OpenAI-compatible endpoint, some clients require a key string.
    if os.environ.get("OPENAI_BASE_URL") and not os.environ.get("OPENAI_API_KEY"):
        os.environ["OPENAI_API_KEY"] = "ollama"


# ---- hand-written generator fakes ----


@dataclass
class FakeValidator:
    verdict: ValidationVerdict = field(default_factory=lambda: ValidationVerdict(valid=True))
    error: Exception | None = None
    calls: list[tuple[str, dict[str, Any]]] = field(default_factory=list)

    async def validate(self, action: str, context: dict[str, Any]) -> ValidationVerdict:
        self.calls.append((action, context))
        if self.error is not None:
            raise self.error
        return self.verdict


@dataclass
class FakeDialogue:
    result: DialogueResult = field(default_factory=lambda: DialogueResult(dialogue="You're awake!"))
    error: Exception | None = None
    calls: list[tuple[str, str, dict[str, Any], dict[str, Any]]] = field(default_factory=list)

    async def generate_dialogue(
        self,
        npc_name: str,
        action: str,
        npc_state: dict[str, Any],
        scene_context: dict[str, Any],
    ) -> DialogueResult:
        self.calls.append((npc_name, action, npc_state, scene_context))
        if self.error is not None:
            raise self.error
        return self.result


@dataclass
class FakeNarrator:
    result: NarrationResult = field(default_factory=lambda: NarrationResult(narration="Nothing much happens."))
    opening: NarrationResult = field(
        default_factory=lambda: NarrationResult(narration="You wake up in Room 302. A nurse hums nearby.")
    )
    continuation: NarrationResult = field(
        default_factory=lambda: NarrationResult(narration="The hospital hum returns as you gather your thoughts.")
    )
    error: Exception | None = None
    delay_s: float = 0.0
    # When set, narration waits for it; lets a test hold a turn mid-flight.
    gate: asyncio.Event | None = None
    calls: list[tuple[str, str | None, NarrationContext]] = field(default_factory=list)
    opening_calls: list[str] = field(default_factory=list)
    continuation_calls: list[NarrationContext] = field(default_factory=list)

    async def generate_narration(
        self,
        action: str,
        npc_dialogue: str | None,
        context: NarrationContext,
    ) -> NarrationResult:
        self.calls.append((action, npc_dialogue, context))
        if self.gate is not None:
            await self.gate.wait()
        if self.delay_s:
            await asyncio.sleep(self.delay_s)
        if self.error is not None:
            raise self.error
        return self.result

    async def generate_opening(self, initial_context: str) -> NarrationResult:
        self.opening_calls.append(initial_context)
        if self.error is not None:
            raise self.error
        return self.opening

    async def generate_continuation(self, context: NarrationContext) -> NarrationResult:
        self.continuation_calls.append(context)
        if self.error is not None:
            raise self.error
        return self.continuation


@dataclass
class FakeSummarizer:
    # Consumed in order; an Exception entry is raised. Falls back to a numbered summary.
    replies: list[str | Exception] = field(default_factory=list)
    calls: list[list[str]] = field(default_factory=list)

    async def summarize(self, chunks: list[str]) -> str:
        self.calls.append(list(chunks))
        if self.replies:
            reply = self.replies.pop(0)
            if isinstance(reply, Exception):
                raise reply
            return reply
        return f"summary {len(self.calls)}"


@dataclass
class FakeIllustrator:
    url: str | None = "https://images.example/scene.png"
    error: Exception | None = None
    calls: list[str] = field(default_factory=list)

    async def illustrate(self, prompt: str) -> str | None:
        self.calls.append(prompt)
        if self.error is not None:
            raise self.error
        return self.url


@pytest.fixture()
def services() -> GameServices:
    return GameServices(
        validator=FakeValidator(),
        dialogue=FakeDialogue(),
        narrator=FakeNarrator(),
        summarizer=FakeSummarizer(),
        illustrator=FakeIllustrator(),
    )


@pytest.fixture()
def settings() -> GameSettings:
    return GameSettings(external_timeout_s=1.0)


@pytest.fixture()
def orchestrator(services: GameServices, settings: GameSettings) -> ActionOrchestrator:
    orch = ActionOrchestrator(services=services, settings=settings)
    orch.store.reset()
    return orch


@pytest.fixture()
def client_and_redis(services: GameServices, settings: GameSettings) -> Generator[Any, None, None]:
    """FastAPI TestClient wired to fakeredis and the fake generators."""

    import fakeredis
    from fastapi.testclient import TestClient

    from solo_rpg.api.deps import get_redis, get_services, get_settings
    from solo_rpg.main import app
    from solo_rpg.sessions import registry

    r = fakeredis.FakeRedis(decode_responses=True)

    def _override() -> Generator[fakeredis.FakeRedis, None, None]:
        yield r

    app.dependency_overrides[get_redis] = _override
    app.dependency_overrides[get_services] = lambda: services
    app.dependency_overrides[get_settings] = lambda: settings
    registry.clear()
    with TestClient(app) as c:
        yield c, r
    app.dependency_overrides.clear()
    registry.clear()
