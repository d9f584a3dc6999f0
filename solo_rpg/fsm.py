from __future__ import annotations

from statemachine import State, StateMachine

from solo_rpg.api.models import TurnPhase


class TurnFSM(StateMachine):
    """Per-session turn state machine.

    idle -> validating -> (npc_turn) -> narrating -> applying -> idle (the opening scene
    and post-load continuation enter at narrating), with `error`
    reachable from every active step. The orchestrator drives it; the machine only
    guards which step may follow which. `idle` is the single-flight gate for a session.
    """

    idle = State(TurnPhase.idle.value, value=TurnPhase.idle.value, initial=True)
    validating = State(TurnPhase.validating.value, value=TurnPhase.validating.value)
    npc_turn = State(TurnPhase.npc_turn.value, value=TurnPhase.npc_turn.value)
    narrating = State(TurnPhase.narrating.value, value=TurnPhase.narrating.value)
    applying = State(TurnPhase.applying.value, value=TurnPhase.applying.value)
    error = State(TurnPhase.error.value, value=TurnPhase.error.value)

    begin = idle.to(validating)
    # Opening and post-load continuation skip validation.
    begin_narration = idle.to(narrating)
    reject = validating.to(idle)
    start_npc_turn = validating.to(npc_turn)
    start_narration = validating.to(narrating) | npc_turn.to(narrating)
    start_applying = narrating.to(applying)
    complete = applying.to(idle)
    fail = validating.to(error) | npc_turn.to(error) | narrating.to(error) | applying.to(error)
    recover = error.to(idle)

    @property
    def phase(self) -> TurnPhase:
        return TurnPhase(str(self.current_state.value))

    @property
    def is_idle(self) -> bool:
        return self.current_state == self.idle
