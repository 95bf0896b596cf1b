"""DeepCite - Cited Research Reports

Simple CLI for running a research session with human review.
"""

import argparse
import asyncio
import sys

from deepcite.config import Settings, settings
from deepcite.engine import EngineResult, WorkflowEngine
from deepcite.errors import ResearchError
from deepcite.models.state import Stage
from deepcite.review import ConsoleReviewChannel, render_report
from deepcite.services.container import build_services
from deepcite.services.logger import setup_logging


def print_summary(result: EngineResult) -> None:
    state = result.state
    report = result.report
    print(f"\n{'=' * 50}")
    print(f"Session:     {result.session_id}")
    print(f"Status:      {result.status.value}")
    if result.termination is not None:
        print(f"Termination: {result.termination.value}")
    print(f"Iterations:  {state.iteration}")
    print(f"Sub-queries: {len(state.sub_queries)}")
    print(f"URLs found:  {len(state.search_results)}")
    print(f"Pages read:  {len(state.scraped_pages)}")
    print(f"Chunks:      {len(state.stored_chunk_ids)}")
    print(f"Citations:   {len(report.citations) if report else 0}")
    if result.report_path is not None:
        print(f"Saved to:    {result.report_path}")
    if result.errors:
        print(f"\n[!] {len(result.errors)} error(s):")
        for entry in result.errors:
            print(f"  - {entry}")
    if result.status is Stage.ERROR and report is not None:
        print("\n[~] Last successful draft:")
        print(render_report(report))


def resolve_settings(args: argparse.Namespace, base: Settings = settings) -> Settings:
    if args.max_iterations is not None:
        return base.model_copy(update={"max_iterations": args.max_iterations})
    return base


async def run_research(args: argparse.Namespace) -> int:
    run_settings = resolve_settings(args)
    channel = ConsoleReviewChannel()
    async with build_services(run_settings) as services:
        engine = WorkflowEngine(services, run_settings)

        if args.clear_store:
            removed = await services.evidence_store.clear()
            print(f"[*] Cleared {removed} stored chunks")

        if args.resume:
            result = await engine.load(args.resume)
            result = await engine.review_loop(result, channel)
        else:
            print(f"Research question: {args.question}")
            print("-" * 50)
            result = await engine.run_interactive(args.question, channel)

    print_summary(result)
    return 1 if result.status is Stage.ERROR else 0


def main() -> None:
    parser = argparse.ArgumentParser(description="DeepCite research report generator")
    parser.add_argument("question", nargs="?", help="Research question")
    parser.add_argument("--resume", metavar="SESSION_ID", help="Resume a session awaiting review")
    parser.add_argument("--clear-store", action="store_true", help="Clear the evidence store first")
    parser.add_argument("--max-iterations", type=int, help="Override MAX_ITERATIONS")
    args = parser.parse_args()

    if not args.question and not args.resume:
        parser.error("a research question or --resume SESSION_ID is required")

    setup_logging(settings)
    try:
        sys.exit(asyncio.run(run_research(args)))
    except ResearchError as e:
        print(f"\n[!] Error: {e}")
        sys.exit(2)


if __name__ == "__main__":
    main()
