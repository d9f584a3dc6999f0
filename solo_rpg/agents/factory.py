from __future__ import annotations

from typing import cast

from solo_rpg.agents.ag2_backend import Ag2ChatAgent
from solo_rpg.agents.autogen_config import ModelTier, model_for_tier
from solo_rpg.agents.base import Agent, GameServices
from solo_rpg.agents.narrative import AgentDialogueGenerator, AgentNarrator, AgentSummarizer, AgentValidator


def create_default_agent(*, name: str, tier: ModelTier = "narrator") -> Agent:
    """Create the default LLM-backed agent for a model tier.

    Currently uses AG2/autogen and reads model configuration from env.
    """

    return cast(Agent, Ag2ChatAgent(name=name, model=model_for_tier(tier)))


def create_default_services() -> GameServices:
    # No image backend ships with the default stack; illustration stays off until one is wired in.
    return GameServices(
        validator=AgentValidator(agent=create_default_agent(name="validator", tier="utility")),
        dialogue=AgentDialogueGenerator(agent=create_default_agent(name="npc", tier="npc")),
        narrator=AgentNarrator(agent=create_default_agent(name="narrator", tier="narrator")),
        summarizer=AgentSummarizer(agent=create_default_agent(name="summarizer", tier="utility")),
        illustrator=None,
    )
