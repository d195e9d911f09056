from __future__ import annotations

import threading

import pytest

from sunset_core.audit import OverallStatus, aggregate, derive_overall_status
from sunset_core.errors import (
    ConfigurationError,
    ConfirmationDeclined,
    NotFoundError,
    ServiceError,
    ValidationError,
)
from sunset_core.providers.types import DirectoryEntry, RegistryEntry, ServiceBundle
from sunset_core.retirement import (
    CANCELLED_DETAIL,
    DRY_RUN_DETAIL,
    WIPE_FAILED_DETAIL,
    Phase,
    PhaseStatus,
    RetirementConfig,
    plan_retirement,
    retire,
)

FULL = dict(remove_from_provisioning=True, remove_from_directory=True)


class FakeManagement:
    def __init__(self, failing=(), missing=()) -> None:
        self.failing = set(failing)
        self.missing = set(missing)
        self.calls: list[str] = []

    def wipe_device(self, device_id: str) -> None:
        self.calls.append(device_id)
        if device_id in self.failing:
            raise ServiceError("wipe request timed out")
        if device_id in self.missing:
            raise NotFoundError("no managed device")


class FakeProvisioning:
    def __init__(self, entries=(), failing=()) -> None:
        self.entries = {entry.serial_number: entry for entry in entries}
        self.failing = set(failing)
        self.calls: list[tuple[str, str]] = []

    def find_by_serial(self, serial_number: str) -> RegistryEntry | None:
        self.calls.append(("find", serial_number))
        return self.entries.get(serial_number)

    def remove_entry(self, entry_id: str) -> None:
        self.calls.append(("remove", entry_id))
        if entry_id in self.failing:
            raise ServiceError("registry returned 503")
        for serial, entry in list(self.entries.items()):
            if entry.entry_id == entry_id:
                del self.entries[serial]


class FakeDirectory:
    def __init__(self, entries=(), failing=()) -> None:
        self.entries = {entry.object_id: entry for entry in entries}
        self.failing = set(failing)
        self.calls: list[tuple[str, str]] = []

    def find_by_device_id(self, device_id: str) -> DirectoryEntry | None:
        self.calls.append(("find", device_id))
        for entry in self.entries.values():
            if device_id in (entry.object_id, entry.device_id):
                return entry
        return None

    def remove_entry(self, object_id: str) -> None:
        self.calls.append(("remove", object_id))
        if object_id in self.failing:
            raise ServiceError("directory returned 500")
        self.entries.pop(object_id, None)


def _bundle(management=None, provisioning=None, directory=None) -> ServiceBundle:
    return ServiceBundle(
        management=management or FakeManagement(),
        provisioning=provisioning or FakeProvisioning(),
        directory=directory or FakeDirectory(),
    )


def _statuses(result) -> dict[Phase, PhaseStatus]:
    return {outcome.phase: outcome.status for outcome in result.outcomes}


@pytest.mark.core
def test_dry_run_makes_no_external_calls(make_device):
    management = FakeManagement()
    provisioning = FakeProvisioning([RegistryEntry("reg-1", "SN0001")])
    directory = FakeDirectory([DirectoryEntry("obj-1", "aad-1")])
    devices = [make_device(), make_device()]
    config = RetirementConfig(dry_run=True, **FULL)

    results = retire(devices, config, _bundle(management, provisioning, directory))

    assert management.calls == []
    assert provisioning.calls == []
    assert directory.calls == []
    for result in results:
        assert [outcome.status for outcome in result.outcomes] == [PhaseStatus.SKIPPED] * 3
        assert {outcome.error_detail for outcome in result.outcomes} == {DRY_RUN_DETAIL}
    summary = aggregate(results, config)
    assert summary.status_counts[OverallStatus.DRY_RUN.value] == 2
    assert summary.exit_code() == 0


@pytest.mark.core
def test_only_enabled_phases_are_recorded(make_device):
    device = make_device()
    results = retire([device], RetirementConfig(remove_from_directory=True), _bundle())
    assert [outcome.phase for outcome in results[0].outcomes] == [
        Phase.WIPE,
        Phase.REMOVE_FROM_DIRECTORY,
    ]

    results = retire([device], RetirementConfig(), _bundle())
    assert [outcome.phase for outcome in results[0].outcomes] == [Phase.WIPE]


@pytest.mark.core
def test_registry_present_directory_absent_is_done(make_device):
    device = make_device(serial_number="SN1")
    provisioning = FakeProvisioning([RegistryEntry("reg-1", "SN1", "aad-404")])
    config = RetirementConfig(**FULL)

    result = retire([device], config, _bundle(provisioning=provisioning))[0]

    assert _statuses(result) == {
        Phase.WIPE: PhaseStatus.SUCCESS,
        Phase.REMOVE_FROM_PROVISIONING: PhaseStatus.SUCCESS,
        Phase.REMOVE_FROM_DIRECTORY: PhaseStatus.NOT_FOUND,
    }
    assert derive_overall_status(result, config) is OverallStatus.DONE


@pytest.mark.core
def test_ungated_wipe_failure_is_partial(make_device):
    device = make_device(serial_number="SN1", directory_object_id="obj-1")
    management = FakeManagement(failing={device.device_id})
    provisioning = FakeProvisioning([RegistryEntry("reg-1", "SN1")])
    directory = FakeDirectory([DirectoryEntry("obj-1", "aad-1")])
    config = RetirementConfig(gate_cleanup_on_wipe_success=False, **FULL)

    result = retire([device], config, _bundle(management, provisioning, directory))[0]

    assert _statuses(result) == {
        Phase.WIPE: PhaseStatus.FAILED,
        Phase.REMOVE_FROM_PROVISIONING: PhaseStatus.SUCCESS,
        Phase.REMOVE_FROM_DIRECTORY: PhaseStatus.SUCCESS,
    }
    assert result.outcome(Phase.WIPE).error_detail == "wipe request timed out"
    summary = aggregate([result], config)
    assert summary.devices[0].overall_status is OverallStatus.PARTIAL
    assert summary.exit_code() == 0


@pytest.mark.core
def test_gated_wipe_failure_skips_cleanup(make_device):
    device = make_device(serial_number="SN1", directory_object_id="obj-1")
    management = FakeManagement(failing={device.device_id})
    provisioning = FakeProvisioning([RegistryEntry("reg-1", "SN1")])
    directory = FakeDirectory([DirectoryEntry("obj-1", "aad-1")])
    config = RetirementConfig(gate_cleanup_on_wipe_success=True, **FULL)

    result = retire([device], config, _bundle(management, provisioning, directory))[0]

    assert _statuses(result)[Phase.REMOVE_FROM_PROVISIONING] is PhaseStatus.SKIPPED
    assert _statuses(result)[Phase.REMOVE_FROM_DIRECTORY] is PhaseStatus.SKIPPED
    assert result.outcome(Phase.REMOVE_FROM_DIRECTORY).error_detail == WIPE_FAILED_DETAIL
    assert provisioning.calls == []
    assert directory.calls == []
    summary = aggregate([result], config)
    assert summary.devices[0].overall_status is OverallStatus.FAILED
    assert summary.exit_code() == 2


@pytest.mark.core
def test_gate_requires_a_cleanup_phase(make_device):
    management = FakeManagement()
    with pytest.raises(ConfigurationError):
        retire(
            [make_device()],
            RetirementConfig(gate_cleanup_on_wipe_success=True),
            _bundle(management),
        )
    assert management.calls == []


@pytest.mark.core
def test_rerun_reports_not_found_instead_of_failed(make_device):
    device = make_device(serial_number="SN1")
    provisioning = FakeProvisioning([RegistryEntry("reg-1", "SN1", "aad-1")])
    directory = FakeDirectory([DirectoryEntry("obj-1", "aad-1")])
    services = _bundle(provisioning=provisioning, directory=directory)
    config = RetirementConfig(**FULL)

    first = retire([device], config, services)[0]
    second = retire([device], config, services)[0]

    assert _statuses(first)[Phase.REMOVE_FROM_PROVISIONING] is PhaseStatus.SUCCESS
    assert _statuses(first)[Phase.REMOVE_FROM_DIRECTORY] is PhaseStatus.SUCCESS
    assert _statuses(second)[Phase.REMOVE_FROM_PROVISIONING] is PhaseStatus.NOT_FOUND
    assert _statuses(second)[Phase.REMOVE_FROM_DIRECTORY] is PhaseStatus.NOT_FOUND
    assert derive_overall_status(second, config) is OverallStatus.DONE


@pytest.mark.core
def test_directory_prefers_object_id(make_device):
    device = make_device(serial_number="SN1", directory_object_id="obj-1")
    provisioning = FakeProvisioning([RegistryEntry("reg-1", "SN1", "aad-other")])
    directory = FakeDirectory([DirectoryEntry("obj-1", "aad-1")])
    config = RetirementConfig(remove_from_directory=True)

    result = retire([device], config, _bundle(provisioning=provisioning, directory=directory))[0]

    assert _statuses(result)[Phase.REMOVE_FROM_DIRECTORY] is PhaseStatus.SUCCESS
    assert directory.calls[0] == ("find", "obj-1")
    assert provisioning.calls == []


@pytest.mark.core
def test_one_device_failure_does_not_stop_the_batch(make_device):
    broken = make_device()
    healthy = make_device()
    management = FakeManagement(failing={broken.device_id})

    results = retire([broken, healthy], RetirementConfig(), _bundle(management))

    assert management.calls == [broken.device_id, healthy.device_id]
    assert _statuses(results[0])[Phase.WIPE] is PhaseStatus.FAILED
    assert _statuses(results[1])[Phase.WIPE] is PhaseStatus.SUCCESS


@pytest.mark.core
def test_unexpected_collaborator_errors_become_failures(make_device):
    class ExplodingManagement:
        def wipe_device(self, device_id: str) -> None:
            raise RuntimeError("socket closed")

    result = retire([make_device()], RetirementConfig(), _bundle(ExplodingManagement()))[0]
    assert result.outcomes[0].status is PhaseStatus.FAILED
    assert "socket closed" in (result.outcomes[0].error_detail or "")


@pytest.mark.core
def test_batch_validation_rejects_bad_serials(make_device):
    management = FakeManagement()
    with pytest.raises(ValidationError):
        retire([make_device(serial_number=None)], RetirementConfig(), _bundle(management))
    with pytest.raises(ValidationError):
        retire(
            [make_device(serial_number="SN1"), make_device(serial_number="SN1")],
            RetirementConfig(),
            _bundle(management),
        )
    assert management.calls == []


@pytest.mark.core
def test_confirmation_is_asked_once_per_batch(make_device):
    devices = [make_device(), make_device(), make_device()]
    seen = []

    def confirm(plan) -> bool:
        seen.append(plan)
        return True

    config = RetirementConfig(confirmation_required=True)
    retire(devices, config, _bundle(), confirm=confirm)

    assert len(seen) == 1
    assert seen[0].device_count == 3
    assert seen[0].devices[0].phases == (Phase.WIPE,)


@pytest.mark.core
def test_declined_confirmation_touches_nothing(make_device):
    management = FakeManagement()
    config = RetirementConfig(confirmation_required=True)

    with pytest.raises(ConfirmationDeclined):
        retire([make_device()], config, _bundle(management), confirm=lambda plan: False)
    with pytest.raises(ConfirmationDeclined):
        retire([make_device()], config, _bundle(management))
    assert management.calls == []


@pytest.mark.core
def test_cancellation_skips_devices_not_yet_started(make_device):
    cancel = threading.Event()
    first = make_device()
    rest = [make_device(), make_device()]

    class CancellingManagement(FakeManagement):
        def wipe_device(self, device_id: str) -> None:
            super().wipe_device(device_id)
            cancel.set()

    management = CancellingManagement()
    provisioning = FakeProvisioning([RegistryEntry("reg-1", first.serial_number)])
    config = RetirementConfig(remove_from_provisioning=True)

    results = retire(
        [first, *rest],
        config,
        _bundle(management, provisioning),
        cancel_event=cancel,
    )

    assert management.calls == [first.device_id]
    assert _statuses(results[0]) == {
        Phase.WIPE: PhaseStatus.SUCCESS,
        Phase.REMOVE_FROM_PROVISIONING: PhaseStatus.SKIPPED,
    }
    for result in results[1:]:
        assert {outcome.error_detail for outcome in result.outcomes} == {CANCELLED_DETAIL}
    summary = aggregate(results, config)
    assert summary.status_counts[OverallStatus.CANCELLED.value] == 3
    assert summary.exit_code() == 0


@pytest.mark.core
def test_parallel_run_keeps_input_order(make_device):
    devices = [make_device() for _ in range(8)]
    management = FakeManagement(failing={devices[3].device_id})

    results = retire(devices, RetirementConfig(), _bundle(management), max_workers=4)

    assert [result.device for result in results] == devices
    assert sorted(management.calls) == sorted(device.device_id for device in devices)
    assert _statuses(results[3])[Phase.WIPE] is PhaseStatus.FAILED


@pytest.mark.core
def test_max_workers_must_be_positive(make_device):
    with pytest.raises(ConfigurationError):
        retire([make_device()], RetirementConfig(), _bundle(), max_workers=0)


@pytest.mark.core
def test_plan_lists_enabled_phases(make_device):
    plan = plan_retirement([make_device(serial_number="SN1")], RetirementConfig(**FULL))
    assert plan.devices[0].serial_number == "SN1"
    assert plan.devices[0].phases == (
        Phase.WIPE,
        Phase.REMOVE_FROM_PROVISIONING,
        Phase.REMOVE_FROM_DIRECTORY,
    )
