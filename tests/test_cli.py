from __future__ import annotations

import csv
import json
import signal

import pytest

from local_adapter.sandbox import SandboxState, seed_sandbox
from sunset_cli import cli
from sunset_core.providers.types import DirectoryEntry, RegistryEntry
from sunset_core.schedule import STATUS_COMPLETED, load_scheduled_runs


@pytest.fixture
def workspace(tmp_path, monkeypatch, make_device):
    state = (tmp_path / "state.json").as_posix()
    seed_sandbox(
        state,
        devices=[
            make_device(device_id="dev-1", serial_number="SN1", model="X", group_memberships=("g12",)),
            make_device(device_id="dev-2", serial_number="SN2", model="X", group_memberships=("g12",)),
            make_device(device_id="dev-3", serial_number="SN3", model="Y", group_memberships=("g12",)),
        ],
        groups={"g12": "Grade 12"},
        provisioning=[RegistryEntry("reg-1", "SN1", "aad-1")],
        directory=[DirectoryEntry("obj-1", "aad-1")],
        failures={"wipe": ["dev-2"]},
    )
    criteria = tmp_path / "criteria.yaml"
    criteria.write_text("cohort_tags: [grade 12]\nmodels_to_retire: [X]\n", encoding="utf-8")
    audit_root = tmp_path / "audit"
    monkeypatch.setenv("SUNSET_SANDBOX_STATE", state)
    monkeypatch.setenv("SUNSET_AUDIT_ROOT", audit_root.as_posix())
    return {
        "state": state,
        "criteria": criteria.as_posix(),
        "audit_root": audit_root,
        "tmp": tmp_path,
    }


def _json_block(output: str) -> dict:
    start = output.index("{")
    end = output.rindex("}") + 1
    return json.loads(output[start:end])


def test_dry_run_exits_zero_and_prints_audit_path(workspace, capsys):
    code = cli.main(
        [
            "run-retirement",
            "--criteria",
            workspace["criteria"],
            "--remove-from-provisioning",
            "--remove-from-directory",
            "--dry-run",
        ]
    )
    assert code == 0
    output = capsys.readouterr().out
    assert "Audit artifact:" in output
    payload = _json_block(output)
    assert payload["status_counts"]["DryRun"] == 2
    assert SandboxState(workspace["state"]).read()["wipes"] == []


def test_failed_device_exits_two(workspace, capsys):
    code = cli.main(
        [
            "run-retirement",
            "--criteria",
            workspace["criteria"],
            "--remove-from-provisioning",
            "--remove-from-directory",
        ]
    )
    assert code == 2
    payload = _json_block(capsys.readouterr().out)
    assert payload["status_counts"]["Done"] == 1
    assert payload["status_counts"]["Failed"] == 1


def test_ungated_failure_is_partial_and_exits_zero(workspace, capsys):
    code = cli.main(
        [
            "run-retirement",
            "--criteria",
            workspace["criteria"],
            "--remove-from-directory",
            "--no-gate-cleanup-on-wipe",
        ]
    )
    assert code == 0
    payload = _json_block(capsys.readouterr().out)
    assert payload["status_counts"]["Failed"] == 0


def test_confirmation_prompt(workspace, monkeypatch, capsys):
    answers = iter(["no"])
    monkeypatch.setattr("builtins.input", lambda prompt: next(answers))
    code = cli.main(["run-retirement", "--criteria", workspace["criteria"], "--confirm"])
    assert code == 1
    captured = capsys.readouterr()
    assert "SN1" in captured.out
    assert "Aborted" in captured.err
    assert not workspace["audit_root"].exists()

    monkeypatch.setattr("builtins.input", lambda prompt: "yes")
    code = cli.main(
        ["run-retirement", "--criteria", workspace["criteria"], "--confirm", "--dry-run"]
    )
    assert code == 0


def test_gate_without_cleanup_is_an_error(workspace, capsys):
    code = cli.main(
        ["run-retirement", "--criteria", workspace["criteria"], "--gate-cleanup-on-wipe"]
    )
    assert code == 1
    assert "Error:" in capsys.readouterr().err


def test_run_requires_selection_source(workspace, capsys):
    assert cli.main(["run-retirement"]) == 1
    assert "--criteria" in capsys.readouterr().err


def test_export_then_validate(workspace, capsys):
    output = (workspace["tmp"] / "review.csv").as_posix()
    code = cli.main(
        ["export-review", "--criteria", workspace["criteria"], "--output", output]
    )
    assert code == 0
    payload = _json_block(capsys.readouterr().out)
    assert payload["candidate_count"] == 2
    assert payload["row_count"] == 3

    with open(output, encoding="utf-8", newline="") as handle:
        rows = list(csv.DictReader(handle))
    rows[0]["decision"] = "Delete"
    with open(output, "w", encoding="utf-8", newline="") as handle:
        writer = csv.DictWriter(handle, fieldnames=list(rows[0].keys()))
        writer.writeheader()
        writer.writerows(rows)

    code = cli.main(["validate-decisions", "--decision-artifact", output])
    assert code == 0
    payload = _json_block(capsys.readouterr().out)
    assert payload["delete"] == 1
    assert payload["unset"] == 2


def test_validate_rejects_malformed_artifact(workspace, capsys):
    path = workspace["tmp"] / "bad.csv"
    path.write_text("serial,choice\nSN1,Delete\n", encoding="utf-8")
    assert cli.main(["validate-decisions", "--decision-artifact", path.as_posix()]) == 1
    assert "serialNumber" in capsys.readouterr().err


def test_schedule_and_run_due(workspace, capsys):
    code = cli.main(
        [
            "schedule-retirement",
            "--criteria",
            workspace["criteria"],
            "--dry-run",
            "--run-at",
            "2026-07-01T06:00:00Z",
        ]
    )
    assert code == 0
    capsys.readouterr()

    assert cli.main(["run-due", "--now", "2026-06-30T06:00:00Z"]) == 0
    assert "No scheduled retirements are due." in capsys.readouterr().out

    assert cli.main(["run-due", "--now", "2026-07-01T07:00:00Z"]) == 0
    output = capsys.readouterr().out
    assert "Audit artifact:" in output

    runs = load_scheduled_runs(workspace["audit_root"].as_posix())
    assert runs[0].status == STATUS_COMPLETED
    assert runs[0].audit_uri


def test_schedule_rejects_bad_timestamp(workspace, capsys):
    code = cli.main(
        ["schedule-retirement", "--criteria", workspace["criteria"], "--run-at", "soon"]
    )
    assert code == 1
    assert "--run-at" in capsys.readouterr().err


def test_interrupt_at_prompt_declines(workspace, monkeypatch, capsys):
    installed: list[object] = []
    monkeypatch.setattr(cli.signal, "signal", lambda signum, handler: installed.append(handler))

    def _interrupt(prompt):
        raise KeyboardInterrupt

    monkeypatch.setattr("builtins.input", _interrupt)
    code = cli.main(["run-retirement", "--criteria", workspace["criteria"], "--confirm"])
    assert code == 1
    assert "Aborted" in capsys.readouterr().err
    assert installed == []
    assert SandboxState(workspace["state"]).read()["wipes"] == []


def test_cancel_handler_armed_after_approval(workspace, monkeypatch, capsys):
    installed: list[object] = []
    answers: list[int] = []

    def _record(signum, handler):
        installed.append(handler)
        return signal.default_int_handler

    def _answer(prompt):
        answers.append(len(installed))
        return "yes"

    monkeypatch.setattr(cli.signal, "signal", _record)
    monkeypatch.setattr("builtins.input", _answer)
    code = cli.main(
        ["run-retirement", "--criteria", workspace["criteria"], "--confirm", "--dry-run"]
    )
    assert code == 0
    assert answers == [0]
    assert installed[0] is not signal.default_int_handler
    assert installed[-1] is signal.default_int_handler
