from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True, slots=True)
class JsonSchema:
    """Minimal JSON Schema wrapper for OpenAI-style structured outputs."""

    name: str
    schema: dict[str, Any]
    strict: bool = True


VALIDATION_SCHEMA = JsonSchema(
    name="validate_action",
    schema={
        "type": "object",
        "additionalProperties": False,
        "properties": {
            "valid": {"type": "boolean"},
            "reason": {"type": "string"},
            "involveNPC": {"type": "boolean"},
            "npcName": {"type": "string"},
            "newScene": {"type": "boolean"},
        },
        "required": ["valid", "reason", "involveNPC", "npcName", "newScene"],
    },
    strict=True,
)

DIALOGUE_SCHEMA = JsonSchema(
    name="npc_dialogue",
    schema={
        "type": "object",
        "properties": {
            "dialogue": {"type": "string"},
            "npcChanges": {"type": "object"},
        },
        "required": ["dialogue"],
    },
    # npcChanges is free-form, which strict mode does not allow.
    strict=False,
)

NARRATION_SCHEMA = JsonSchema(
    name="narration",
    schema={
        "type": "object",
        "properties": {
            "narration": {"type": "string"},
            "stateChanges": {"type": "object"},
            "toolCalls": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {
                        "name": {"type": "string"},
                        "parameters": {"type": "object"},
                    },
                    "required": ["name", "parameters"],
                },
            },
        },
        "required": ["narration"],
    },
    strict=False,
)
