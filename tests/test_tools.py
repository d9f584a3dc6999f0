from __future__ import annotations

import pytest

from solo_rpg.state_store import StateStore
from solo_rpg.tools import TOOL_NAMES, ToolExecutor, changes_from_tool_calls


@pytest.fixture()
def store() -> StateStore:
    s = StateStore()
    s.reset()
    return s


def test_tool_definitions_cover_the_narrator_surface() -> None:
    assert TOOL_NAMES == {"update_state", "update_inventory", "complete_quest", "update_character_profile", "log_event"}


def test_tool_calls_fold_into_one_change_object() -> None:
    changes = changes_from_tool_calls(
        [
            {"name": "update_state", "parameters": {"changes": {"player": {"experience": 5}}}},
            {"name": "update_inventory", "parameters": {"action": "add", "items": [{"name": "Potion", "quantity": 1}]}},
            {"name": "update_inventory", "parameters": {"action": "add", "items": [{"name": "Key", "quantity": 1}]}},
            {"name": "complete_quest", "parameters": {"completedQuest": "Welcome to the System", "newQuest": "Daily Quest"}},
            {"name": "log_event", "parameters": {"event": "Accepted the System"}},
            {"name": "teleport", "parameters": {"to": "Jeju"}},
        ]
    )

    assert changes == {
        "player": {
            "experience": 5,
            "inventoryAdd": [{"name": "Potion", "quantity": 1}, {"name": "Key", "quantity": 1}],
        },
        "quests": {"completeQuest": "Welcome to the System", "current": "Daily Quest"},
        "history": ["Accepted the System"],
    }


def test_character_profile_call_maps_to_player_fields() -> None:
    changes = changes_from_tool_calls([{"name": "update_character_profile", "arguments": {"level": 2, "hp": 90, "rank": "D"}}])
    assert changes == {"player": {"rank": "D", "level": 2, "HP": 90}}


def test_folded_changes_apply_cleanly(store: StateStore) -> None:
    changes = changes_from_tool_calls(
        [
            {"name": "update_inventory", "parameters": {"action": "add", "items": [{"name": "Potion", "quantity": 2}]}},
            {"name": "complete_quest", "parameters": {"completedQuest": "Welcome to the System"}},
        ]
    )

    assert store.update(changes).applied
    doc = store.document
    assert doc.player.find_stack("potion") is not None
    assert doc.quests.completed == ["Welcome to the System"]
    assert doc.quests.current is None


def test_executor_update_inventory(store: StateStore) -> None:
    ex = ToolExecutor(store)

    added = ex.execute("update_inventory", {"action": "add", "items": [{"name": "Potion", "quantity": 3}]})
    removed = ex.execute("update_inventory", {"action": "remove", "items": [{"name": "Potion", "quantity": 1}]})

    assert (added.success, added.message) == (True, "Items added to inventory")
    assert (removed.success, removed.message) == (True, "Items removed from inventory")
    player = store.document.player
    idx = player.find_stack("Potion")
    assert idx is not None
    assert player.inventory[idx].quantity == 2


def test_executor_update_character_profile(store: StateStore) -> None:
    ex = ToolExecutor(store)

    res = ex.execute("update_character_profile", {"rank": "D", "level": 3, "hp": 90, "gold": 50})
    empty = ex.execute("update_character_profile", {})

    assert (res.success, res.message) == (True, "Character profile updated")
    player = store.document.player
    assert (player.rank, player.level, player.hp, player.gold) == ("D", 3, 90, 50)
    assert not empty.success


def test_executor_reports_bad_parameters(store: StateStore) -> None:
    ex = ToolExecutor(store)

    bad_action = ex.execute("update_inventory", {"action": "steal", "items": []})
    bad_level = ex.execute("update_state", {"changes": {"player": {"level": "high"}}})

    assert not bad_action.success
    assert bad_action.message == "Failed to update inventory: Invalid action: steal"
    assert not bad_level.success
    assert bad_level.message.startswith("Failed to update state")


def test_executor_complete_quest_and_log_event(store: StateStore) -> None:
    ex = ToolExecutor(store)

    done = ex.execute("complete_quest", {"completedQuest": "Welcome to the System", "newQuest": "Daily Quest"})
    logged = ex.execute("log_event", {"event": "Cleared the first quest"})

    assert done.message == 'Quest "Welcome to the System" completed'
    assert logged.success
    doc = store.document
    assert doc.quests.current == "Daily Quest"
    assert doc.history == ["Cleared the first quest"]


def test_executor_unknown_tool_raises(store: StateStore) -> None:
    with pytest.raises(ValueError) as e:
        ToolExecutor(store).execute("summon_shadow", {})
    assert str(e.value) == "Unknown function: summon_shadow"
