"""
Systemd unit reconciliation
Converges the resticara-* service/timer files on disk to the configured job list
"""
import logging
import os
from pathlib import Path
from typing import List, Optional, Sequence

from models.jobs import DEFAULT_PRUNE_INTERVAL_DAYS, JobSpec, ResticaraError
from models.units import (
    SERVICE_SUFFIX,
    TIMER_SUFFIX,
    ReconciliationPlan,
    ReconciliationResult,
    UnitDescriptor,
    expected_unit_names,
    find_unit_name_collisions,
    is_managed_unit_file,
    unit_base_name,
)
from services.systemd import ServiceManager, ServiceManagerError

logger = logging.getLogger(__name__)

PREFERRED_UNIT_DIR = "/etc/systemd/system"
DEFAULT_RESTICARA_BIN = "/usr/local/bin/resticara"


class ReconciliationError(ResticaraError):
    """A reconciliation step that must succeed did not"""


def describe_failure(result) -> str:
    return result.stderr.strip() or result.error_message or f"exit code {result.returncode}"


class UnitReconciler:
    """Writes, removes and activates systemd units so they match the job list.

    Unit file writes are fatal on failure. A failed daemon-reload is fatal on
    purpose: timers must not be enabled against definitions systemd has not
    loaded. Stale unit cleanup and timer activation are best effort: failures
    are logged and recorded on the result, and the pass continues. Files
    already written are never rolled back.
    """

    def __init__(self, service_manager: ServiceManager,
                 resticara_bin: str = DEFAULT_RESTICARA_BIN,
                 default_prune_days: int = DEFAULT_PRUNE_INTERVAL_DAYS,
                 unit_dir: Optional[str] = None,
                 preferred_unit_dir: str = PREFERRED_UNIT_DIR):
        self.service_manager = service_manager
        self.resticara_bin = resticara_bin
        self.default_prune_days = default_prune_days
        self.unit_dir_override = unit_dir
        self.preferred_unit_dir = preferred_unit_dir

    def reconcile(self, jobs: Sequence[JobSpec]) -> ReconciliationResult:
        ordered_jobs = sorted(jobs, key=lambda j: j.key)

        unit_dir = self.resolve_unit_dir()
        plan = self.plan(ordered_jobs, unit_dir)
        result = ReconciliationResult(unit_dir=str(unit_dir))

        for name in sorted(plan.stale_names):
            self._remove_stale_unit(unit_dir, name, result)

        timers: List[str] = []
        for descriptor in plan.to_write:
            self._write_unit_files(unit_dir, descriptor, result)
            timers.extend(descriptor.timers)

        reload_result = self.service_manager.daemon_reload()
        if not reload_result.succeeded:
            raise ReconciliationError(
                f"failed to reload systemd daemon: {describe_failure(reload_result)}"
            )

        for timer in timers:
            self._activate_timer(timer, result)

        logger.info(
            f"Reconciled {len(plan.to_write)} job(s) in {unit_dir}: "
            f"{len(result.removed_units)} stale unit(s) removed, "
            f"{len(result.activation_errors)} activation error(s)"
        )
        return result

    def resolve_unit_dir(self) -> Path:
        """Pick the directory unit files are written to"""
        if self.unit_dir_override:
            path = Path(self.unit_dir_override)
            if not path.is_dir():
                raise ReconciliationError(f"configured unit directory does not exist: {path}")
            return path

        try:
            paths = self.service_manager.unit_search_paths()
        except ServiceManagerError as e:
            raise ReconciliationError(str(e)) from e

        if self.preferred_unit_dir in paths:
            preferred = Path(self.preferred_unit_dir)
            if preferred.is_dir() and os.access(preferred, os.W_OK):
                return preferred

        for candidate in paths:
            if Path(candidate).is_dir():
                return Path(candidate)

        raise ReconciliationError(
            f"could not determine systemd unit directory from UnitPath: {' '.join(paths)}"
        )

    def plan(self, jobs: Sequence[JobSpec], unit_dir: Path) -> ReconciliationPlan:
        collisions = find_unit_name_collisions(list(jobs))
        if collisions:
            name, first, second = collisions[0]
            raise ReconciliationError(f"jobs {first} and {second} both map to unit {name}")

        return ReconciliationPlan(
            expected_names=expected_unit_names(list(jobs)),
            existing_names=self.scan_existing(unit_dir),
            to_write=[
                UnitDescriptor.for_job(job, self.resticara_bin, self.default_prune_days)
                for job in jobs
            ],
        )

    def scan_existing(self, unit_dir: Path) -> set:
        try:
            entries = os.listdir(unit_dir)
        except OSError as e:
            raise ReconciliationError(f"could not read unit directory {unit_dir}: {e}") from e
        return {unit_base_name(entry) for entry in entries if is_managed_unit_file(entry)}

    def _remove_stale_unit(self, unit_dir: Path, name: str, result: ReconciliationResult):
        logger.info(f"Removing stale unit {name}")
        errors = []
        for suffix in (TIMER_SUFFIX, SERVICE_SUFFIX):
            disabled = self.service_manager.disable_now(name + suffix)
            if not disabled.succeeded:
                errors.append(f"disable {name}{suffix}: {describe_failure(disabled)}")

        for suffix in (TIMER_SUFFIX, SERVICE_SUFFIX):
            try:
                (unit_dir / f"{name}{suffix}").unlink(missing_ok=True)
            except OSError as e:
                errors.append(f"remove {name}{suffix}: {e}")

        if errors:
            message = "; ".join(errors)
            logger.warning(f"Stale unit cleanup incomplete for {name}: {message}")
            result.cleanup_errors[name] = message
        result.removed_units.append(name)

    def _write_unit_files(self, unit_dir: Path, descriptor: UnitDescriptor, result: ReconciliationResult):
        # TODO: write to a temporary file and rename into place so a crash cannot leave a half-written unit
        for filename, content in descriptor.files().items():
            path = unit_dir / filename
            try:
                path.write_text(content)
                path.chmod(0o644)
            except OSError as e:
                raise ReconciliationError(f"failed to write unit {filename}: {e}") from e
            result.written_files.append(filename)
            logger.debug(f"Wrote {path}")

    def _activate_timer(self, timer: str, result: ReconciliationResult):
        enabled = self.service_manager.enable(timer)
        if not enabled.succeeded:
            message = f"failed to enable {timer}: {describe_failure(enabled)}"
            logger.warning(message)
            result.activation_errors[timer] = message
            return

        restarted = self.service_manager.restart(timer)
        if not restarted.succeeded:
            message = f"failed to restart {timer}: {describe_failure(restarted)}"
            logger.warning(message)
            result.activation_errors[timer] = message
