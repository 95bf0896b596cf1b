"""Drives the stage graph, merges updates and suspends at review."""
from __future__ import annotations

import time
from dataclasses import dataclass
from pathlib import Path

from loguru import logger

from deepcite.config import Settings
from deepcite.engine.routing import route_after_review
from deepcite.errors import InvalidInput, ResearchError, SessionNotResumable
from deepcite.models.research import HumanFeedback, Report
from deepcite.models.state import STAGE_SUCCESSORS, SessionState, Stage, TerminationReason
from deepcite.review import ReviewChannel, feedback_from_decision
from deepcite.services import logger as log_service
from deepcite.services.container import ResearchServices
from deepcite.stages import STAGE_RUNNERS, StageContext, error_entry


@dataclass(slots=True)
class EngineResult:
    session_id: str
    status: Stage
    termination: TerminationReason | None
    report: Report | None
    errors: list[str]
    state: SessionState
    report_path: Path | None = None

    @property
    def awaiting_review(self) -> bool:
        return self.status is Stage.REVIEW


class WorkflowEngine:
    def __init__(self, services: ResearchServices, settings: Settings):
        self.services = services
        self.settings = settings
        self.ctx = StageContext(services=services, settings=settings)

    async def start(self, question: str, *, session_id: str | None = None) -> EngineResult:
        """Run the first pass up to the review boundary."""
        if not question or not question.strip():
            raise InvalidInput("research question is empty")
        state = SessionState(research_question=question.strip())
        if session_id:
            state.session_id = session_id
        log_service.log_event("session_started", state.research_question, session_id=state.session_id)
        return await self._run_pass(state)

    async def resume(self, session_id: str, feedback: HumanFeedback | None) -> EngineResult:
        """Merge review feedback into a checkpointed session and route it."""
        state = await self._load_suspended(session_id)
        state.apply({"human_feedback": feedback})
        transition = route_after_review(state, self.settings.max_iterations)
        log_service.log_research_step(
            session_id,
            "review",
            "completed",
            {"iteration": state.iteration, "next": transition.next, "reason": transition.reason},
        )

        if transition.next == "decompose":
            state.apply({"retrieved_chunks": [], "draft_report": None, "current_stage": Stage.DECOMPOSE})
            return await self._run_pass(state)
        if transition.next == "error":
            state.apply({"current_stage": Stage.ERROR, "termination": TerminationReason.ERROR})
            await self._save(state)
            return self._result(state)

        state.apply(
            {
                "final_report": state.draft_report,
                "current_stage": Stage.DONE,
                "termination": transition.reason,
            }
        )
        await self._save(state)
        report_path = None
        if state.final_report is not None:
            report_path = self.services.exporter.write(state.final_report)
            logger.info(f"Report written to {report_path}")
        return self._result(state, report_path=report_path)

    async def abort(self, session_id: str) -> EngineResult:
        """End a suspended session without a final report."""
        state = await self._load_suspended(session_id)
        state.apply(
            {
                "final_report": None,
                "current_stage": Stage.DONE,
                "termination": TerminationReason.ABORTED,
            }
        )
        await self._save(state)
        log_service.log_research_step(session_id, "review", "aborted", {"iteration": state.iteration})
        return self._result(state)

    async def run_interactive(
        self,
        question: str,
        channel: ReviewChannel,
        *,
        session_id: str | None = None,
    ) -> EngineResult:
        result = await self.start(question, session_id=session_id)
        return await self.review_loop(result, channel)

    async def review_loop(self, result: EngineResult, channel: ReviewChannel) -> EngineResult:
        """Present each draft to the channel until the session terminates."""
        while result.awaiting_review and result.state.draft_report is not None:
            decision = await channel.review(
                result.state.draft_report,
                iteration=result.state.iteration,
                max_iterations=self.settings.max_iterations,
            )
            if decision.action == "abort":
                return await self.abort(result.session_id)
            result = await self.resume(result.session_id, feedback_from_decision(decision))
        return result

    async def load(self, session_id: str) -> EngineResult:
        return self._result(await self.services.checkpoints.load(session_id))

    async def _load_suspended(self, session_id: str) -> SessionState:
        state = await self.services.checkpoints.load(session_id)
        if state.current_stage is not Stage.REVIEW:
            raise SessionNotResumable(
                f"Session {session_id} is at '{state.current_stage.value}', not awaiting review"
            )
        return state

    async def _run_pass(self, state: SessionState) -> EngineResult:
        while state.current_stage in STAGE_RUNNERS:
            stage = state.current_stage
            t0 = time.monotonic()
            log_service.log_research_step(state.session_id, stage.value, "started", {"iteration": state.iteration})
            try:
                update = await STAGE_RUNNERS[stage](state, self.ctx)
            except ResearchError as e:
                state.apply(
                    {
                        "errors": [error_entry(stage, state.iteration, str(e))],
                        "current_stage": Stage.ERROR,
                        "termination": TerminationReason.ERROR,
                    }
                )
                log_service.log_research_step(
                    state.session_id,
                    stage.value,
                    "error",
                    {"iteration": state.iteration, "error": str(e), "type": type(e).__name__},
                )
                await self._save(state)
                return self._result(state)

            state.apply({**update, "current_stage": STAGE_SUCCESSORS[stage]})
            logger.debug(f"{stage.value} finished in {int((time.monotonic() - t0) * 1000)}ms")

        await self._save(state)
        log_service.log_research_step(
            state.session_id,
            "review",
            "suspended",
            {"iteration": state.iteration, "errors": len(state.errors)},
        )
        return self._result(state)

    async def _save(self, state: SessionState) -> None:
        backend = self.settings.checkpoint_backend
        try:
            await self.services.checkpoints.save(state)
        except Exception as e:
            log_service.log_checkpoint(state.session_id, state.current_stage.value, backend, error=str(e))
            raise
        log_service.log_checkpoint(state.session_id, state.current_stage.value, backend)

    @staticmethod
    def _result(state: SessionState, *, report_path: Path | None = None) -> EngineResult:
        return EngineResult(
            session_id=state.session_id,
            status=state.current_stage,
            termination=state.termination,
            report=state.best_report,
            errors=list(state.errors),
            state=state,
            report_path=report_path,
        )
