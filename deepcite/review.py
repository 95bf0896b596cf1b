"""Human review of a draft report: approve, reject with feedback, or abort."""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Callable, Literal, Protocol

from deepcite.errors import SessionAbort
from deepcite.models.research import HumanFeedback, Report

ReviewAction = Literal["approve", "reject", "abort"]
DEFAULT_REJECT_FEEDBACK = "Please improve the report"


@dataclass(slots=True)
class ReviewDecision:
    action: ReviewAction
    feedback: str = ""
    requested_changes: list[str] = field(default_factory=list)


class ReviewChannel(Protocol):
    async def review(self, report: Report, *, iteration: int, max_iterations: int) -> ReviewDecision: ...


def feedback_from_decision(decision: ReviewDecision) -> HumanFeedback:
    if decision.action == "approve":
        return HumanFeedback(approved=True)
    if decision.action == "reject":
        return HumanFeedback(
            approved=False,
            feedback=decision.feedback.strip() or DEFAULT_REJECT_FEEDBACK,
            requested_changes=[c.strip() for c in decision.requested_changes if c.strip()],
        )
    raise SessionAbort("review aborted")


def render_report(report: Report) -> str:
    lines = [
        "=" * 72,
        report.title,
        "=" * 72,
        "",
        "EXECUTIVE SUMMARY",
        report.executive_summary,
        "",
    ]
    for index, section in enumerate(report.sections, start=1):
        lines.append(f"{index}. {section.title}")
        lines.append(section.content)
        lines.append("")
    lines.append("CONCLUSIONS")
    lines.append(report.conclusions)
    lines.append("")
    lines.append(f"SOURCES ({len(report.citations)})")
    lines.extend(f"  [{c.id}] {c.title or 'Untitled'} - {c.url}" for c in report.citations)
    return "\n".join(lines)


class ConsoleReviewChannel:
    """Blocking terminal prompt. Unrecognized choices re-prompt."""

    def __init__(
        self,
        *,
        input_func: Callable[[str], str] = input,
        output_func: Callable[[str], None] = print,
    ):
        self._input = input_func
        self._output = output_func

    async def _ask(self, prompt: str) -> str:
        return (await asyncio.to_thread(self._input, prompt)).strip()

    async def review(self, report: Report, *, iteration: int, max_iterations: int) -> ReviewDecision:
        self._output(render_report(report))
        self._output(f"\nIteration {iteration} of {max_iterations}")

        while True:
            choice = (await self._ask("[A]pprove, [R]eject with feedback, or [Q]uit: ")).lower()
            if choice in ("a", "approve"):
                return ReviewDecision(action="approve")
            if choice in ("q", "quit", "abort"):
                return ReviewDecision(action="abort")
            if choice in ("r", "reject"):
                break
            self._output("Please enter A, R or Q.")

        feedback = await self._ask("What should be improved? ")
        changes: list[str] = []
        while True:
            change = await self._ask("Specific change (blank to finish): ")
            if not change:
                break
            changes.append(change)
        return ReviewDecision(
            action="reject",
            feedback=feedback or DEFAULT_REJECT_FEEDBACK,
            requested_changes=changes,
        )
