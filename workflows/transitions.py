"""
Legal-action table for the pipeline.

The stage does not advance on success; it stays at the stage the last
action started. This table decides what may run next from there.
"""

from __future__ import annotations

from models.schemas import Stage

RESET = "reset"
SIDE_ACTIONS = frozenset({"update_files", "chat", "fix_issue"})

PIPELINE_ACTIONS: dict[Stage, frozenset[str]] = {
    Stage.IDLE: frozenset({"clone", "analyze"}),
    Stage.CLONING: frozenset(),
    Stage.ANALYZING: frozenset({"analyze", "fix"}),
    Stage.FIXING: frozenset({"test"}),
    Stage.TESTING: frozenset({"measure"}),
    Stage.MEASURING: frozenset({"record"}),
    Stage.RECORDING: frozenset({"approve"}),
    Stage.APPROVAL: frozenset({"deploy"}),
    Stage.DEPLOYING: frozenset(),
    Stage.COMPLETE: frozenset(),
    Stage.ERROR: frozenset(),
}


def legal_actions(stage: Stage, has_repository: bool, busy: bool = False) -> frozenset[str]:
    """Actions a caller may invoke now. ``reset`` is always legal."""
    if busy:
        return frozenset({RESET})

    actions = set(PIPELINE_ACTIONS[stage])
    if stage == Stage.IDLE:
        # clone before a repository is loaded, analyze after
        actions.discard("analyze" if not has_repository else "clone")
    elif not has_repository:
        actions.clear()

    if has_repository and stage != Stage.ERROR:
        actions |= SIDE_ACTIONS
    actions.add(RESET)
    return frozenset(actions)


def is_legal(action: str, stage: Stage, has_repository: bool, busy: bool = False) -> bool:
    return action in legal_actions(stage, has_repository, busy)
