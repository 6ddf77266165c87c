"""
cli.py - Command-line entry point for stepflow.

Usage:
    stepflow validate FLOW_FILE [--json]
    stepflow run FLOW_FILE [--responses R1 R2 ...] [--auto] [--demo-delay S]
    stepflow simulate FLOW_FILE [--fail-at N] [--step-delay S]

Exit codes:
    0  success (flow valid / run completed / simulation completed)
    1  the flow is invalid, the run failed, or the simulation hit its failure
    2  bad usage (missing file, unusable arguments)
    3  the run is still waiting for user input
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from stepflow.config.flow_registry import load_flow_file
from stepflow.runtime.callbacks import EngineCallbacks
from stepflow.runtime.errors import StepflowError, ValidationError
from stepflow.runtime.executors import build_demo_registry
from stepflow.runtime.service import RunService
from stepflow.runtime.simulation import simulate
from stepflow.runtime.types import EngineState, Flow
from stepflow.runtime.validation import validate_flow

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_USAGE = 2
EXIT_WAITING = 3


def _load(path: str) -> Optional[Flow]:
    try:
        return load_flow_file(Path(path))
    except FileNotFoundError:
        print(f"Flow file not found: {path}", file=sys.stderr)
    except ValueError as e:
        print(f"Could not read flow: {e}", file=sys.stderr)
    return None


def _progress_callbacks(flow: Flow) -> EngineCallbacks:
    titles = [step.title for step in flow.ordered_steps()]
    total = len(titles)

    def on_block_start(index: int) -> None:
        print(f"[{index + 1}/{total}] {titles[index]} ...")

    def on_block_complete(index: int, result) -> None:
        print(f"[{index + 1}/{total}] {titles[index]}: ok")

    def on_user_action_required(index: int, prompt: str, resume) -> None:
        print(f"[{index + 1}/{total}] {titles[index]}: waiting for input")
        print(f"    {prompt}")

    def on_error(error, index: int) -> None:
        print(f"[{index + 1}/{total}] {titles[index]}: FAILED ({error.message})")

    def on_complete() -> None:
        print("All steps completed successfully")

    return EngineCallbacks(
        on_block_start=on_block_start,
        on_block_complete=on_block_complete,
        on_user_action_required=on_user_action_required,
        on_error=on_error,
        on_complete=on_complete,
    )


def cmd_validate(args: argparse.Namespace) -> int:
    flow = _load(args.flow_file)
    if flow is None:
        return EXIT_USAGE
    result = validate_flow(flow)
    if args.json:
        print(json.dumps(result.to_dict(), indent=2))
    elif result.ok:
        print(f"[PASS] {flow.id}: {len(flow.steps)} step(s)")
    else:
        print(result.format())
    return EXIT_OK if result.ok else EXIT_FAILED


def cmd_run(args: argparse.Namespace) -> int:
    flow = _load(args.flow_file)
    if flow is None:
        return EXIT_USAGE

    demo_delay = args.demo_delay
    service = RunService(
        runs_dir=Path(args.runs_dir) if args.runs_dir else None,
        registry_factory=lambda: build_demo_registry(demo_delay),
        background=False,
        persist=not args.no_persist,
        auto_run_delay_seconds=args.auto_delay,
    )
    try:
        run_id = service.start_run(
            flow,
            mode="auto" if args.auto else "continuous",
            callbacks=_progress_callbacks(flow),
        )
    except ValidationError as e:
        print(e.reason, file=sys.stderr)
        for issue in e.issues:
            print(issue.format(), file=sys.stderr)
        return EXIT_FAILED

    responses: List[str] = list(args.responses or [])
    status = service.get_status(run_id)
    while status.state == EngineState.PAUSED:
        if responses:
            response = responses.pop(0)
        elif args.interactive and sys.stdin.isatty():
            response = input("> ")
        else:
            print(f"Run {run_id} is waiting for input at step {status.pending_index}")
            return EXIT_WAITING
        try:
            status = service.resume_run(run_id, response)
        except StepflowError as e:
            print(f"Resume failed: {e}", file=sys.stderr)
            return EXIT_FAILED

    print(f"Run {run_id}: {status.state.value}")
    if status.state == EngineState.COMPLETED:
        return EXIT_OK
    return EXIT_FAILED


def cmd_simulate(args: argparse.Namespace) -> int:
    flow = _load(args.flow_file)
    if flow is None:
        return EXIT_USAGE
    try:
        result = simulate(
            flow,
            fail_at_index=args.fail_at,
            callbacks=_progress_callbacks(flow),
            step_delay_seconds=args.step_delay,
            transition_delay_seconds=args.transition_delay,
        )
    except ValidationError as e:
        print(e.reason, file=sys.stderr)
        for issue in e.issues:
            print(issue.format(), file=sys.stderr)
        return EXIT_FAILED
    except ValueError as e:
        print(str(e), file=sys.stderr)
        return EXIT_USAGE

    print(" ".join(s.value for s in result.statuses))
    return EXIT_OK if result.state == EngineState.COMPLETED else EXIT_FAILED


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="stepflow",
        description="Validate, run and simulate step-sequenced flows.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    p_validate = sub.add_parser("validate", help="Check a flow definition")
    p_validate.add_argument("flow_file")
    p_validate.add_argument("--json", action="store_true", help="Print issues as JSON")
    p_validate.set_defaults(func=cmd_validate)

    p_run = sub.add_parser("run", help="Run a flow with the demo executors")
    p_run.add_argument("flow_file")
    p_run.add_argument(
        "--responses",
        nargs="*",
        metavar="RESPONSE",
        help="Answers for steps that ask for user input, in order",
    )
    p_run.add_argument("--interactive", action="store_true", help="Prompt for missing answers")
    p_run.add_argument("--auto", action="store_true", help="Pace steps with the auto-runner")
    p_run.add_argument("--auto-delay", type=float, default=None, help="Seconds between auto-run steps")
    p_run.add_argument("--demo-delay", type=float, default=None, help="Demo processing time per step")
    p_run.add_argument("--runs-dir", default=None, help="Where to write run history")
    p_run.add_argument("--no-persist", action="store_true", help="Do not write run history")
    p_run.set_defaults(func=cmd_run)

    p_sim = sub.add_parser("simulate", help="Simulate a flow without executors")
    p_sim.add_argument("flow_file")
    p_sim.add_argument("--fail-at", type=int, default=None, metavar="N", help="0-based step to fail")
    p_sim.add_argument("--step-delay", type=float, default=None)
    p_sim.add_argument("--transition-delay", type=float, default=None)
    p_sim.set_defaults(func=cmd_simulate)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
