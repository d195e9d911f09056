from __future__ import annotations

import argparse
import json
import os
import signal
import sys
import threading
from datetime import datetime, timezone
from typing import Any

from sunset_core.audit.summary import EXIT_DEVICES_FAILED, EXIT_OK
from sunset_core.config import Config
from sunset_core.decisions.export import export_review_artifact
from sunset_core.decisions.ingest import load_decision_artifact
from sunset_core.devices.store import coerce_datetime
from sunset_core.eligibility.criteria import load_criteria
from sunset_core.eligibility.select import evaluate
from sunset_core.errors import ConfirmationDeclined
from sunset_core.logging import configure_logging
from sunset_core.notify.webhook import build_notifier
from sunset_core.pipeline import Backend, PipelineOutcome, RunRequest, run_pipeline
from sunset_core.retirement.types import RetirementPlan
from sunset_core.schedule.store import (
    due_runs,
    mark_completed,
    mark_failed,
    register_scheduled_run,
)

SERVICE_NAME = "sunset-cli"


def _print_json(payload: dict[str, Any]) -> None:
    print(json.dumps(payload, indent=2, sort_keys=True))


def _apply_env(env: dict[str, str]) -> None:
    for key, value in env.items():
        os.environ[key] = value


def _load_config(args: argparse.Namespace) -> Config:
    overrides: dict[str, str] = {}
    if getattr(args, "backend", None):
        overrides["SUNSET_BACKEND"] = args.backend
    if getattr(args, "sandbox_state", None):
        overrides["SUNSET_SANDBOX_STATE"] = args.sandbox_state
    if getattr(args, "audit_root", None):
        overrides["SUNSET_AUDIT_ROOT"] = args.audit_root
    _apply_env(overrides)
    config = Config.from_env()
    configure_logging(
        service=SERVICE_NAME,
        env=config.env,
        version=os.getenv("SUNSET_VERSION"),
    )
    return config


def _build_backend(config: Config) -> Backend:
    if config.backend == "graph":
        from graph_adapter.backend import build_graph_backend

        return build_graph_backend(config)
    from local_adapter.sandbox import build_sandbox_backend

    return build_sandbox_backend(config.sandbox_state_uri or "")


def _run_request(args: argparse.Namespace, *, confirmation_required: bool) -> RunRequest:
    if not args.criteria and not args.decision_artifact:
        raise ValueError("Either --criteria or --decision-artifact is required")
    return RunRequest(
        criteria_uri=args.criteria,
        decision_artifact_uri=args.decision_artifact,
        dry_run=args.dry_run,
        remove_from_provisioning=args.remove_from_provisioning,
        remove_from_directory=args.remove_from_directory,
        gate_cleanup_on_wipe_success=args.gate_cleanup_on_wipe,
        confirmation_required=confirmation_required,
        cohort_tag=args.cohort_tag,
    )


def _prompt_confirmation(plan: RetirementPlan) -> bool:
    config = plan.config
    phases = ", ".join(phase.value for phase in config.enabled_phases())
    mode = "DRY RUN" if config.dry_run else "LIVE"
    print(f"Retirement plan {plan.run_id} ({mode})")
    print(f"Phases: {phases}")
    print(f"Gate cleanup on wipe success: {config.gate_cleanup_on_wipe_success}")
    for device in plan.devices:
        print(f"  {device.serial_number}  {device.device_id}")
    print(f"{plan.device_count} device(s) selected.")
    try:
        answer = input("Type 'yes' to continue: ")
    except (EOFError, KeyboardInterrupt):
        print()
        return False
    return answer.strip().lower() == "yes"


def _outcome_payload(outcome: PipelineOutcome) -> dict[str, Any]:
    summary = outcome.summary
    return {
        "run_id": outcome.run_id,
        "dry_run": summary.config.dry_run,
        "device_count": len(summary.devices),
        "status_counts": summary.status_counts,
        "phase_counts": summary.phase_counts,
        "audit_uri": outcome.artifact.json_uri,
        "audit_csv_uri": outcome.artifact.csv_uri,
    }


def _max_workers(args: argparse.Namespace, config: Config) -> int:
    if args.max_workers is not None:
        return args.max_workers
    return config.max_workers


def cmd_run_retirement(args: argparse.Namespace) -> int:
    config = _load_config(args)
    request = _run_request(args, confirmation_required=args.confirm)
    backend = _build_backend(config)

    cancel_event = threading.Event()
    previous: list[Any] = []

    def _cancel(signum, frame) -> None:
        print("Cancelling: running devices finish their current phase.", file=sys.stderr)
        cancel_event.set()

    def _arm_cancel() -> None:
        if not previous and threading.current_thread() is threading.main_thread():
            previous.append(signal.signal(signal.SIGINT, _cancel))

    def _confirm(plan: RetirementPlan) -> bool:
        # The cancel handler is armed only once the batch is approved.
        if not _prompt_confirmation(plan):
            return False
        _arm_cancel()
        return True

    if not request.confirmation_required:
        _arm_cancel()
    try:
        outcome = run_pipeline(
            request,
            backend,
            audit_root=config.audit_root,
            notifier=build_notifier(config),
            confirm=_confirm,
            cancel_event=cancel_event,
            max_workers=_max_workers(args, config),
            default_gate=config.gate_cleanup_on_wipe,
        )
    except ConfirmationDeclined as exc:
        print(f"Aborted: {exc}", file=sys.stderr)
        return 1
    finally:
        if previous:
            signal.signal(signal.SIGINT, previous[0])

    _print_json(_outcome_payload(outcome))
    print(f"Audit artifact: {outcome.artifact.json_uri}")
    return outcome.exit_code


def cmd_export_review(args: argparse.Namespace) -> int:
    config = _load_config(args)
    backend = _build_backend(config)
    criteria = load_criteria(args.criteria)
    devices = backend.inventory.list_devices(args.cohort_tag)
    selection = evaluate(devices, criteria, group_lookup=backend.groups)
    export = export_review_artifact(
        selection,
        args.output,
        include_excluded=args.include_excluded,
    )
    _print_json(
        {
            "uri": export.uri,
            "row_count": export.row_count,
            "skipped_count": export.skipped_count,
            "candidate_count": len(selection.candidates),
            "excluded": selection.excluded_counts(),
        }
    )
    return 0


def cmd_validate_decisions(args: argparse.Namespace) -> int:
    decisions = load_decision_artifact(args.decision_artifact)
    _print_json(
        {
            "valid": True,
            "total": decisions.total,
            "keep": len(decisions.keep),
            "delete": len(decisions.delete),
            "unset": len(decisions.unset),
        }
    )
    return 0


def cmd_schedule_retirement(args: argparse.Namespace) -> int:
    config = _load_config(args)
    run_at = coerce_datetime(args.run_at)
    if run_at is None:
        raise ValueError(f"Invalid --run-at timestamp: {args.run_at}")
    if not args.criteria and not args.decision_artifact:
        raise ValueError("Either --criteria or --decision-artifact is required")
    scheduled = register_scheduled_run(
        base_uri=config.audit_root,
        run_at=run_at,
        criteria_uri=args.criteria,
        decision_artifact_uri=args.decision_artifact,
        dry_run=args.dry_run,
        remove_from_provisioning=args.remove_from_provisioning,
        remove_from_directory=args.remove_from_directory,
        gate_cleanup_on_wipe_success=args.gate_cleanup_on_wipe,
    )
    _print_json(
        {
            "id": scheduled.id,
            "run_at": scheduled.run_at,
            "status": scheduled.status,
        }
    )
    return 0


def cmd_run_due(args: argparse.Namespace) -> int:
    config = _load_config(args)
    now = coerce_datetime(args.now) if args.now else datetime.now(timezone.utc)
    if now is None:
        raise ValueError(f"Invalid --now timestamp: {args.now}")
    pending = due_runs(config.audit_root, now=now)
    if not pending:
        print("No scheduled retirements are due.")
        return EXIT_OK

    backend = _build_backend(config)
    exit_code = EXIT_OK
    reports: list[dict[str, Any]] = []
    for scheduled in pending:
        request = RunRequest(
            criteria_uri=scheduled.criteria_uri,
            decision_artifact_uri=scheduled.decision_artifact_uri,
            dry_run=scheduled.dry_run,
            remove_from_provisioning=scheduled.remove_from_provisioning,
            remove_from_directory=scheduled.remove_from_directory,
            gate_cleanup_on_wipe_success=scheduled.gate_cleanup_on_wipe_success,
        )
        try:
            outcome = run_pipeline(
                request,
                backend,
                audit_root=config.audit_root,
                notifier=build_notifier(config),
                max_workers=config.max_workers,
                default_gate=config.gate_cleanup_on_wipe,
            )
        except Exception as exc:
            mark_failed(base_uri=config.audit_root, run=scheduled, error=str(exc))
            print(f"Error: scheduled run {scheduled.id} failed: {exc}", file=sys.stderr)
            exit_code = 1
            continue
        mark_completed(
            base_uri=config.audit_root,
            run=scheduled,
            run_id=outcome.run_id,
            audit_uri=outcome.artifact.json_uri,
        )
        report = _outcome_payload(outcome)
        report["schedule_id"] = scheduled.id
        reports.append(report)
        print(f"Audit artifact: {outcome.artifact.json_uri}")
        if outcome.exit_code != EXIT_OK and exit_code == EXIT_OK:
            exit_code = EXIT_DEVICES_FAILED

    _print_json({"runs": reports})
    return exit_code


def _add_backend_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--backend", choices=["graph", "sandbox"])
    parser.add_argument("--sandbox-state")
    parser.add_argument("--audit-root")


def _add_run_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--criteria")
    parser.add_argument("--decision-artifact")
    parser.add_argument("--cohort-tag")
    parser.add_argument("--remove-from-provisioning", action="store_true")
    parser.add_argument("--remove-from-directory", action="store_true")
    parser.add_argument(
        "--gate-cleanup-on-wipe",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Skip cleanup phases when the wipe fails (default from env)",
    )
    parser.add_argument("--dry-run", action="store_true", help="Record skips only")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="sunset")
    subparsers = parser.add_subparsers(dest="command")

    run_parser = subparsers.add_parser(
        "run-retirement", help="Select devices and run the teardown"
    )
    _add_run_args(run_parser)
    run_parser.add_argument(
        "--confirm", action="store_true", help="Prompt before touching any device"
    )
    run_parser.add_argument("--max-workers", type=int)
    _add_backend_args(run_parser)
    run_parser.set_defaults(func=cmd_run_retirement)

    export_parser = subparsers.add_parser(
        "export-review", help="Write a decision review CSV"
    )
    export_parser.add_argument("--criteria", required=True)
    export_parser.add_argument("--output", required=True)
    export_parser.add_argument("--cohort-tag")
    export_parser.add_argument(
        "--include-excluded",
        action=argparse.BooleanOptionalAction,
        default=True,
    )
    _add_backend_args(export_parser)
    export_parser.set_defaults(func=cmd_export_review)

    validate_parser = subparsers.add_parser(
        "validate-decisions", help="Check a decision artifact"
    )
    validate_parser.add_argument("--decision-artifact", required=True)
    validate_parser.set_defaults(func=cmd_validate_decisions)

    schedule_parser = subparsers.add_parser(
        "schedule-retirement", help="Store a retirement to run later"
    )
    _add_run_args(schedule_parser)
    schedule_parser.add_argument("--run-at", required=True)
    _add_backend_args(schedule_parser)
    schedule_parser.set_defaults(func=cmd_schedule_retirement)

    due_parser = subparsers.add_parser("run-due", help="Run scheduled retirements now due")
    due_parser.add_argument("--now", help="Override the current time (ISO 8601)")
    _add_backend_args(due_parser)
    due_parser.set_defaults(func=cmd_run_due)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not getattr(args, "command", None):
        parser.print_help()
        return 1
    try:
        return args.func(args)
    except Exception as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
