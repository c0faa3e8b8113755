import pytest

from conftest import FakeServiceManager, make_job
from services.unit_reconciler import ReconciliationError, UnitReconciler


def read_units(unit_dir):
    return {path.name: path.read_bytes() for path in sorted(unit_dir.iterdir())}


@pytest.fixture
def reconciler(service_manager):
    return UnitReconciler(service_manager, resticara_bin="/usr/local/bin/resticara", default_prune_days=30)


def test_writes_four_units_per_job(reconciler, unit_dir, jobs):
    result = reconciler.reconcile(jobs)

    assert sorted(read_units(unit_dir)) == sorted([
        "resticara-dir-home.service", "resticara-dir-home.timer",
        "resticara-dir-home-prune.service", "resticara-dir-home-prune.timer",
        "resticara-dir-my-backup.service", "resticara-dir-my-backup.timer",
        "resticara-dir-my-backup-prune.service", "resticara-dir-my-backup-prune.timer",
        "resticara-mysql-orders.service", "resticara-mysql-orders.timer",
        "resticara-mysql-orders-prune.service", "resticara-mysql-orders-prune.timer",
    ])
    assert result.unit_dir == str(unit_dir)
    assert len(result.written_files) == 12
    assert result.removed_units == []


def test_unit_contents(reconciler, unit_dir, jobs):
    reconciler.reconcile(jobs)

    assert (unit_dir / "resticara-mysql-orders.service").read_text() == (
        "[Unit]\n"
        "Description=Resticara backup for mysql:orders\n"
        "\n"
        "[Service]\n"
        "Type=oneshot\n"
        "ExecStart=/usr/local/bin/resticara run mysql:orders\n"
        "\n"
        "[Install]\n"
        "WantedBy=multi-user.target\n"
    )
    assert (unit_dir / "resticara-mysql-orders.timer").read_text() == (
        "[Unit]\n"
        "Description=Resticara backup timer for mysql:orders\n"
        "\n"
        "[Timer]\n"
        "OnCalendar=daily\n"
        "Persistent=true\n"
        "\n"
        "[Install]\n"
        "WantedBy=timers.target\n"
    )
    prune_service = (unit_dir / "resticara-mysql-orders-prune.service").read_text()
    assert "ExecStart=/usr/local/bin/resticara prune /srv/restic/db\n" in prune_service
    prune_timer = (unit_dir / "resticara-mysql-orders-prune.timer").read_text()
    assert "OnUnitActiveSec=30d\n" in prune_timer
    assert "Persistent=true\n" in prune_timer


def test_job_prune_interval_overrides_default(reconciler, unit_dir, jobs):
    reconciler.reconcile(jobs)

    assert "OnUnitActiveSec=7d\n" in (unit_dir / "resticara-dir-my-backup-prune.timer").read_text()


def test_keys_with_spaces_are_quoted_in_exec_start(reconciler, unit_dir, jobs):
    reconciler.reconcile(jobs)

    service = (unit_dir / "resticara-dir-my-backup.service").read_text()
    assert 'ExecStart=/usr/local/bin/resticara run "dir:my backup"\n' in service


def test_second_pass_is_idempotent(reconciler, service_manager, unit_dir, jobs):
    reconciler.reconcile(jobs)
    first = read_units(unit_dir)

    result = reconciler.reconcile(jobs)

    assert read_units(unit_dir) == first
    assert result.removed_units == []
    assert service_manager.operations('disable') == []


def test_removed_job_deletes_exactly_its_units(reconciler, service_manager, unit_dir, jobs):
    reconciler.reconcile(jobs)
    before = read_units(unit_dir)

    remaining = [job for job in jobs if job.key != "mysql:orders"]
    result = reconciler.reconcile(remaining)

    after = read_units(unit_dir)
    assert set(before) - set(after) == {
        "resticara-mysql-orders.service", "resticara-mysql-orders.timer",
        "resticara-mysql-orders-prune.service", "resticara-mysql-orders-prune.timer",
    }
    assert all(after[name] == before[name] for name in after)
    assert sorted(result.removed_units) == ["resticara-mysql-orders", "resticara-mysql-orders-prune"]
    assert sorted(service_manager.operations('disable')) == sorted([
        "resticara-mysql-orders.timer", "resticara-mysql-orders.service",
        "resticara-mysql-orders-prune.timer", "resticara-mysql-orders-prune.service",
    ])


def test_unrelated_files_are_left_alone(reconciler, unit_dir, jobs):
    (unit_dir / "nginx.service").write_text("[Unit]\n")
    (unit_dir / "resticara-notes.txt").write_text("keep")

    reconciler.reconcile(jobs)

    assert (unit_dir / "nginx.service").exists()
    assert (unit_dir / "resticara-notes.txt").exists()


def test_stale_cleanup_failure_does_not_abort(unit_dir, jobs):
    (unit_dir / "resticara-dir-old.service").write_text("old")
    (unit_dir / "resticara-dir-old.timer").write_text("old")
    manager = FakeServiceManager([str(unit_dir)], fail_on={'disable': {"resticara-dir-old.timer"}})

    result = UnitReconciler(manager).reconcile(jobs)

    assert "resticara-dir-old" in result.cleanup_errors
    assert not (unit_dir / "resticara-dir-old.service").exists()
    assert (unit_dir / "resticara-dir-home.service").exists()


def test_daemon_reload_once_then_timers_enabled_in_order(reconciler, service_manager, jobs):
    reconciler.reconcile(jobs)

    reloads = [call for call in service_manager.calls if call[0] == 'daemon-reload']
    assert len(reloads) == 1
    expected = [
        "resticara-dir-home.timer", "resticara-dir-home-prune.timer",
        "resticara-dir-my-backup.timer", "resticara-dir-my-backup-prune.timer",
        "resticara-mysql-orders.timer", "resticara-mysql-orders-prune.timer",
    ]
    assert service_manager.operations('enable') == expected
    assert service_manager.operations('restart') == expected
    first_enable = service_manager.calls.index(('enable', expected[0]))
    assert service_manager.calls.index(('daemon-reload',)) < first_enable


def test_activation_failure_is_reported_per_unit(unit_dir, jobs):
    manager = FakeServiceManager([str(unit_dir)], fail_on={'enable': {"resticara-dir-home.timer"}})

    result = UnitReconciler(manager).reconcile(jobs)

    assert list(result.activation_errors) == ["resticara-dir-home.timer"]
    assert "resticara-dir-home.timer" not in manager.operations('restart')
    assert "resticara-mysql-orders-prune.timer" in manager.operations('restart')
    assert result.activated_timers == 5


def test_daemon_reload_failure_raises_without_rollback(unit_dir, jobs):
    manager = FakeServiceManager([str(unit_dir)], reload_fails=True)

    with pytest.raises(ReconciliationError, match="reload"):
        UnitReconciler(manager).reconcile(jobs)

    assert (unit_dir / "resticara-dir-home.service").exists()
    assert manager.operations('enable') == []


def test_write_failure_aborts_and_names_unit(unit_dir, jobs):
    (unit_dir / "resticara-dir-home.timer").mkdir()
    manager = FakeServiceManager([str(unit_dir)])

    with pytest.raises(ReconciliationError, match="resticara-dir-home.timer"):
        UnitReconciler(manager).reconcile(jobs)

    assert ('daemon-reload',) not in manager.calls


def test_unit_dir_falls_back_to_first_existing_path(tmp_path, unit_dir):
    manager = FakeServiceManager([str(tmp_path / "missing"), str(unit_dir), str(tmp_path)])

    assert UnitReconciler(manager).resolve_unit_dir() == unit_dir


def test_unresolvable_unit_dir_is_fatal(tmp_path):
    manager = FakeServiceManager([str(tmp_path / "missing")])

    with pytest.raises(ReconciliationError, match="could not determine"):
        UnitReconciler(manager).reconcile([make_job("dir:home")])
    assert manager.calls == []


def test_configured_unit_dir_overrides_lookup(tmp_path, unit_dir):
    manager = FakeServiceManager([str(tmp_path / "missing")])

    result = UnitReconciler(manager, unit_dir=str(unit_dir)).reconcile([make_job("dir:home")])

    assert result.unit_dir == str(unit_dir)
    assert (unit_dir / "resticara-dir-home.service").exists()


def test_preferred_unit_dir_wins_when_listed_and_writable(tmp_path, unit_dir):
    preferred = tmp_path / "etc-systemd"
    preferred.mkdir()
    manager = FakeServiceManager([str(unit_dir), str(preferred)])

    reconciler = UnitReconciler(manager, preferred_unit_dir=str(preferred))

    assert reconciler.resolve_unit_dir() == preferred


def test_unwritable_preferred_unit_dir_falls_through(tmp_path, unit_dir, monkeypatch):
    preferred = tmp_path / "etc-systemd"
    preferred.mkdir()
    monkeypatch.setattr("services.unit_reconciler.os.access", lambda path, mode: str(path) != str(preferred))
    manager = FakeServiceManager([str(unit_dir), str(preferred)])

    reconciler = UnitReconciler(manager, preferred_unit_dir=str(preferred))

    assert reconciler.resolve_unit_dir() == unit_dir


def test_unlisted_preferred_unit_dir_is_ignored(tmp_path, unit_dir):
    preferred = tmp_path / "etc-systemd"
    preferred.mkdir()
    manager = FakeServiceManager([str(unit_dir)])

    reconciler = UnitReconciler(manager, preferred_unit_dir=str(preferred))

    assert reconciler.resolve_unit_dir() == unit_dir


@pytest.mark.parametrize("first, second", [
    ("dir:x", "dir:x-prune"),
    ("dir:a b", "dir:a-b"),
])
def test_colliding_unit_names_are_rejected_before_writing(service_manager, unit_dir, first, second):
    jobs = [make_job(first), make_job(second)]

    with pytest.raises(ReconciliationError, match="both map to unit"):
        UnitReconciler(service_manager).reconcile(jobs)

    assert list(unit_dir.iterdir()) == []
    assert service_manager.calls == []
