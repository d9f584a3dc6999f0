from __future__ import annotations

from solo_rpg.api.models import (
    GameState,
    ItemStack,
    NpcRecord,
    PlayerState,
    PlayerStats,
    QuestLog,
    Rank,
    WorldState,
)
from solo_rpg.prompts import load_prompt

OPENING_IMAGE_PROMPT = (
    "A hospital room in Seoul Ilshin Hospital, morning light filtering through blinds, "
    "sterile and quiet, Solo Leveling manhwa-style dark fantasy atmosphere"
)


def build_initial_state() -> GameState:
    """Fresh document for a new game: the E-rank hunter waking up after the Double Dungeon."""

    return GameState(
        player=PlayerState(
            name="Sung Jinwoo",
            rank=Rank.E,
            level=1,
            experience=0,
            hp=100,
            mp=0,
            stats=PlayerStats(STR=10, AGI=10, INT=10, SENSE=10, VIT=10),
            inventory=[
                ItemStack(name="Hospital Gown", type="clothing", description="A plain patient gown", quantity=1),
            ],
            gold=0,
        ),
        world=WorldState(location="Seoul Ilshin Hospital - Room 302", time="Day 1 - Morning", dungeon=None),
        npcs={
            "Nurse Joohee": NpcRecord(relationship="friendly", last_seen="hospital", knows_about_system=False),
        },
        quests=QuestLog(current="Welcome to the System", completed=[]),
        history=[],
    )


def initial_context() -> str:
    return load_prompt("initial_context.txt").strip()
