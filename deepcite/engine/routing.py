from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from loguru import logger

from deepcite.models.state import SessionState, Stage, TerminationReason


@dataclass(frozen=True, slots=True)
class Transition:
    next: Literal["decompose", "done", "error"]
    reason: TerminationReason | None = None


def route_after_review(state: SessionState, max_iterations: int) -> Transition:
    """Decide where a reviewed session goes next.

    Order: error marker, missing feedback, approval, iteration cap, revise.
    """
    if state.current_stage is Stage.ERROR:
        return Transition("error", TerminationReason.ERROR)

    feedback = state.human_feedback
    if feedback is None:
        return Transition("done", TerminationReason.NO_FEEDBACK)
    if feedback.approved:
        return Transition("done", TerminationReason.APPROVED)
    if state.iteration >= max_iterations:
        logger.warning(
            f"Max iterations ({max_iterations}) reached, forcing completion; "
            "the final report may not address the latest feedback"
        )
        return Transition("done", TerminationReason.ITERATION_LIMIT)
    return Transition("decompose")
