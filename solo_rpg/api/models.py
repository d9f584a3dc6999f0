from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from solo_rpg.core.events import TurnEvent
from solo_rpg.core.tokens import estimate_tokens

SAVE_VERSION = "1.0.0"

BASE_MAX_HP = 100
MAX_HP_PER_LEVEL = 10


class Rank(StrEnum):
    E = "E"
    D = "D"
    C = "C"
    B = "B"
    A = "A"
    S = "S"


class TurnPhase(StrEnum):
    idle = "idle"
    validating = "validating"
    npc_turn = "npc_turn"
    narrating = "narrating"
    applying = "applying"
    error = "error"


class ItemStack(BaseModel):
    model_config = ConfigDict(extra="allow")

    # Identity is case-insensitive; see `key`.
    name: str = Field(..., min_length=1)
    type: str = "misc"
    description: str = ""
    quantity: int = Field(default=1, ge=1)

    @property
    def key(self) -> str:
        return self.name.casefold()


class PlayerStats(BaseModel):
    # Fixed stat block; unknown stat names coming from a patch are ignored.
    model_config = ConfigDict(extra="ignore")

    STR: int = 10
    AGI: int = 10
    INT: int = 10
    SENSE: int = 10
    VIT: int = 10


class PlayerState(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    name: str = "Hunter"
    rank: Rank = Rank.E
    level: int = 1
    experience: int = 0
    hp: int = Field(default=BASE_MAX_HP, alias="HP")
    mp: int = Field(default=0, alias="MP")
    # When unset, the cap follows the level.
    max_hp: int | None = Field(default=None, alias="maxHP")
    stats: PlayerStats = Field(default_factory=PlayerStats)
    inventory: list[ItemStack] = Field(default_factory=list)
    gold: int = 0

    @field_validator("rank", mode="before")
    @classmethod
    def _normalize_rank(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().upper().removesuffix("-RANK")
        return value

    @field_validator("inventory", mode="before")
    @classmethod
    def _fold_stacks(cls, value: Any) -> Any:
        """Collapse stacks sharing a case-insensitive name and drop empty ones.

        A generic merge overwrites the whole inventory array, so the one-stack-per-name
        rule has to hold for whatever list the narrator hands us.
        """

        if not isinstance(value, list):
            return value

        folded: list[dict[str, Any]] = []
        index: dict[str, int] = {}
        for raw in value:
            item = raw.model_dump() if isinstance(raw, ItemStack) else raw
            if not isinstance(item, dict):
                continue
            name = item.get("name")
            if not isinstance(name, str) or not name.strip():
                continue
            qty = item.get("quantity")
            qty = 1 if qty is None else qty
            if isinstance(qty, (int, float)) and qty <= 0:
                continue

            key = name.casefold()
            if key in index:
                existing = folded[index[key]]
                existing["quantity"] = int(existing["quantity"]) + int(qty)
            else:
                index[key] = len(folded)
                folded.append({**item, "quantity": qty})
        return folded

    @field_validator("experience", "mp", "gold")
    @classmethod
    def _non_negative(cls, value: int) -> int:
        return max(0, value)

    @field_validator("level")
    @classmethod
    def _at_least_one(cls, value: int) -> int:
        return max(1, value)

    @property
    def hp_cap(self) -> int:
        if self.max_hp is not None:
            return max(1, self.max_hp)
        return BASE_MAX_HP + MAX_HP_PER_LEVEL * (self.level - 1)

    @model_validator(mode="after")
    def _clamp_hp(self) -> "PlayerState":
        self.hp = min(max(0, self.hp), self.hp_cap)
        return self

    def find_stack(self, name: str) -> int | None:
        key = name.casefold()
        for idx, stack in enumerate(self.inventory):
            if stack.key == key:
                return idx
        return None


class WorldState(BaseModel):
    model_config = ConfigDict(extra="allow")

    location: str = ""
    time: str = ""
    dungeon: Any = None


class NpcRecord(BaseModel):
    # NPC records are flat: any extra knowledge flag a generator invents is kept.
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    relationship: str | None = None
    last_seen: str | None = Field(default=None, alias="lastSeen")
    knows_about_system: bool | None = Field(default=None, alias="knowsAboutSystem")

    def as_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class QuestLog(BaseModel):
    model_config = ConfigDict(extra="allow")

    current: str | None = None
    completed: list[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _keep_completed_consistent(self) -> "QuestLog":
        seen: set[str] = set()
        ordered: list[str] = []
        for name in self.completed:
            if name in seen or name == self.current:
                continue
            seen.add(name)
            ordered.append(name)
        self.completed = ordered
        return self


class GameState(BaseModel):
    """The game-state document. Only StateStore replaces it."""

    model_config = ConfigDict(extra="allow")

    player: PlayerState = Field(default_factory=PlayerState)
    world: WorldState = Field(default_factory=WorldState)
    npcs: dict[str, NpcRecord] = Field(default_factory=dict)
    quests: QuestLog = Field(default_factory=QuestLog)
    history: list[str] = Field(default_factory=list)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class ConversationEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: str
    text: str
    tokens: int = Field(..., ge=0)

    @classmethod
    def create(cls, *, role: str, text: str) -> "ConversationEntry":
        return cls(role=role, text=text, tokens=estimate_tokens(text))


class SummaryEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: Literal["Summary"] = "Summary"
    text: str
    tokens: int = Field(..., ge=0)
    # True when the summarizer failed and the raw chunk text was kept instead.
    degraded: bool = False

    @classmethod
    def create(cls, *, text: str, degraded: bool = False) -> "SummaryEntry":
        return cls(text=text, tokens=estimate_tokens(text), degraded=degraded)


class ConversationSnapshot(BaseModel):
    entries: list[ConversationEntry] = Field(default_factory=list)
    summaries: list[SummaryEntry] = Field(default_factory=list)


class SaveSnapshot(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    state: GameState
    initial_context: str = Field(default="", alias="initialContext")
    timestamp: datetime
    version: str = SAVE_VERSION
    conversation: ConversationSnapshot | None = None

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


# ---- external generator payloads ----


class ValidationVerdict(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    valid: bool
    reason: str = ""
    involve_npc: bool = Field(default=False, alias="involveNPC")
    npc_name: str | None = Field(default=None, alias="npcName")
    new_scene: bool = Field(default=False, alias="newScene")

    @property
    def wants_npc_turn(self) -> bool:
        return self.involve_npc and bool(self.npc_name and self.npc_name.strip())


class DialogueResult(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    dialogue: str = ""
    npc_changes: dict[str, Any] | None = Field(default=None, alias="npcChanges")


class NarrationResult(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    narration: str = ""
    state_changes: dict[str, Any] | None = Field(default=None, alias="stateChanges")


# ---- API payloads ----


TurnStatus = Literal["ok", "rejected", "busy", "failed"]


class TurnResult(BaseModel):
    """Render-ready outcome of one orchestrated step (turn, opening, or continuation)."""

    status: TurnStatus
    action: str | None = None
    # User-facing text for rejected/busy/failed turns.
    message: str | None = None
    npc_name: str | None = None
    npc_dialogue: str | None = None
    narration: str | None = None
    image_url: str | None = None
    state_changed: bool = False
    compacted: int = 0
    state: GameState | None = None
    events: list[TurnEvent] = Field(default_factory=list)


class ActionRequest(BaseModel):
    action: str = Field(..., min_length=1, max_length=4000)


class LoadRequest(BaseModel):
    save_id: UUID


class SaveResponse(BaseModel):
    save_id: UUID
    session_id: UUID
    timestamp: datetime
    version: str


class ToolResponse(BaseModel):
    success: bool
    message: str
    state: GameState | None = None


class SessionView(BaseModel):
    session_id: UUID
    phase: TurnPhase
    state: GameState
    initial_context: str
    history: list[ConversationEntry]
    summaries: list[SummaryEntry]
    history_tokens: int


class SessionIdResponse(BaseModel):
    session_id: UUID
    turn: TurnResult
