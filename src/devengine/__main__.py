#!/usr/bin/env python3
"""CLI entrypoint for the development engine auto-run."""

from __future__ import annotations

import argparse
import importlib
import json
import os
import sys
from dataclasses import asdict
from typing import List, Optional

from loguru import logger

from devengine.collaborators.base import Collaborators
from devengine.errors import AutoRunError, InputValidationError

COLLABORATORS_ENV = "DEVENGINE_COLLABORATORS"


def load_collaborators(path: Optional[str] = None) -> Collaborators:
    """Build collaborators from a `package.module:factory` path."""
    path = path or os.getenv(COLLABORATORS_ENV)
    if not path or ":" not in path:
        raise SystemExit(f"Set {COLLABORATORS_ENV} to a 'module:factory' path that returns Collaborators")
    module_name, factory_name = path.split(":", 1)
    factory = getattr(importlib.import_module(module_name), factory_name)
    return factory()


def _print(snapshot) -> None:
    if snapshot is None:
        print("null")
        return
    if isinstance(snapshot, list):
        print(json.dumps([asdict(s) for s in snapshot], indent=2, default=str))
    elif isinstance(snapshot, dict):
        print(json.dumps(snapshot, indent=2, default=str))
    else:
        print(json.dumps(asdict(snapshot), indent=2, default=str))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Development engine auto-run CLI")
    parser.add_argument("--collaborators", help=f"module:factory path (default: ${COLLABORATORS_ENV})")
    sub = parser.add_subparsers(dest="command", required=True)

    def project_cmd(name: str, help_text: str) -> argparse.ArgumentParser:
        cmd = sub.add_parser(name, help=help_text)
        cmd.add_argument("project_id")
        return cmd

    project_cmd("status", "Show the project's job")
    steps = project_cmd("steps", "List the job's steps")
    steps.add_argument("--limit", type=int)

    start = project_cmd("start", "Start a new auto-run job")
    start.add_argument("--mode", choices=["fast", "balanced", "premium"])
    start.add_argument("--start-document", default="idea")
    start.add_argument("--target-document")
    start.add_argument("--format", dest="fmt")

    project_cmd("run-next", "Advance the job one step")
    loop = project_cmd("loop", "Advance until the job needs a human or finishes")
    loop.add_argument("--max-steps", type=int, default=100)

    project_cmd("pause", "Pause the job")
    resume = project_cmd("resume", "Resume a paused, stopped or failed job")
    resume.add_argument("--pinned", action="store_true", help="Resume from the pinned version")
    pin = project_cmd("pin", "Pin the version to resume from")
    pin.add_argument("document_id")
    pin.add_argument("version_id")
    project_cmd("stop", "Stop the job")
    project_cmd("clear", "Delete the project's jobs")

    approve = project_cmd("approve", "Answer a pending approval")
    approve.add_argument("decision", choices=["approve", "revise", "stop"])
    project_cmd("pending-doc", "Preview the document awaiting approval")

    decide = project_cmd("decide", "Resolve a pending decision")
    decide.add_argument("decision_id")
    decide.add_argument("option_id", help="Option id, or 'other' with --text")
    decide.add_argument("--text", help="Custom text for 'other'")

    project_cmd("force-promote", "Skip promotion gating once")
    set_stage = project_cmd("set-stage", "Move the job to another stage")
    set_stage.add_argument("stage")
    restart = project_cmd("restart", "Restart the job from a stage, resetting its counters")
    restart.add_argument("stage")
    extend = project_cmd("extend", "Extend the step budget")
    extend.add_argument("--steps", type=int)

    drift = project_cmd("drift", "Resolve or acknowledge drift on the current document")
    drift.add_argument("resolution", choices=["accept_drift", "intentional_pivot", "reseed", "acknowledge"])
    drift.add_argument("--event-id", type=int)
    drift_events = project_cmd("drift-events", "List drift events with their ids")
    drift_events.add_argument("--unresolved", action="store_true")
    stale = project_cmd("stale", "Answer a stale-document pause")
    stale.add_argument("choice", choices=["regenerate", "continue", "review_criteria"])
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    from devengine.jobs.auto_run import AutoRunOrchestrator

    orchestrator = AutoRunOrchestrator(load_collaborators(args.collaborators))
    pid = args.project_id

    try:
        if args.command == "status":
            result = orchestrator.get_job(pid)
        elif args.command == "steps":
            result = orchestrator.get_steps(pid, limit=args.limit)
        elif args.command == "start":
            result = orchestrator.start(pid, mode=args.mode, start_document=args.start_document,
                                        target_document=args.target_document, fmt=args.fmt)
        elif args.command == "run-next":
            result = orchestrator.run_next(pid)
        elif args.command == "loop":
            result = orchestrator.run_until_idle(pid, max_calls=args.max_steps)
        elif args.command == "pause":
            result = orchestrator.pause(pid)
        elif args.command == "resume":
            result = orchestrator.resume(pid, follow_latest=not args.pinned)
        elif args.command == "pin":
            result = orchestrator.set_resume_source(pid, args.document_id, args.version_id)
        elif args.command == "stop":
            result = orchestrator.stop(pid)
        elif args.command == "clear":
            orchestrator.clear(pid)
            result = None
        elif args.command == "approve":
            result = orchestrator.approve_next(pid, args.decision)
        elif args.command == "pending-doc":
            result = orchestrator.get_pending_doc(pid)
        elif args.command == "decide":
            result = orchestrator.approve_decision(pid, args.decision_id, args.option_id, args.text)
        elif args.command == "force-promote":
            result = orchestrator.force_promote(pid)
        elif args.command == "set-stage":
            result = orchestrator.set_stage(pid, args.stage)
        elif args.command == "restart":
            result = orchestrator.restart_from_stage(pid, args.stage)
        elif args.command == "extend":
            result = orchestrator.extend_budget(pid, args.steps)
        elif args.command == "drift-events":
            result = orchestrator.get_drift_events(pid, unresolved_only=args.unresolved)
        elif args.command == "drift":
            if args.resolution == "acknowledge":
                result = orchestrator.acknowledge_drift(pid, args.event_id)
            else:
                result = orchestrator.resolve_drift(pid, args.resolution, args.event_id)
        else:
            result = orchestrator.resolve_stale(pid, args.choice)
    except InputValidationError as exc:
        logger.error("Rejected ({}): {}", exc.code, exc)
        return 2
    except AutoRunError as exc:
        logger.error("Failed ({}): {}", exc.code, exc)
        return 1

    _print(result)
    return 0


if __name__ == "__main__":
    sys.exit(main())
