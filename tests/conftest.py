from pathlib import Path
from typing import Callable, Dict, List, Optional

import pytest

from models.builders import CommandSpec
from models.jobs import JobKind, JobSpec, RetentionPolicy
from models.results import CommandResult
from services.execution import CommandExecutor
from services.systemd import ServiceManager


class FakeExecutor(CommandExecutor):
    """Returns scripted results instead of spawning processes"""

    def __init__(self, failing: Optional[Callable[[CommandSpec], bool]] = None):
        self.failing = failing or (lambda command: False)
        self.commands: List[CommandSpec] = []

    def run(self, command: CommandSpec) -> CommandResult:
        self.commands.append(command)
        failed = self.failing(command)
        return CommandResult(
            command_text=command.command_text,
            succeeded=not failed,
            stdout="failed output" if failed else "ok output",
            stderr="boom" if failed else "",
            returncode=1 if failed else 0,
        )

    @property
    def command_texts(self) -> List[str]:
        return [command.command_text for command in self.commands]


class FakeServiceManager(ServiceManager):
    """Records systemctl calls; optionally fails selected operations"""

    def __init__(self, paths: List[str], fail_on: Optional[Dict[str, set]] = None,
                 reload_fails: bool = False):
        self.paths = paths
        self.fail_on = fail_on or {}
        self.reload_fails = reload_fails
        self.calls: List[tuple] = []

    def _result(self, operation: str, unit: str = "") -> CommandResult:
        self.calls.append((operation, unit) if unit else (operation,))
        failed = unit in self.fail_on.get(operation, set())
        return CommandResult(
            command_text=f"systemctl {operation} {unit}".strip(),
            succeeded=not failed,
            stderr=f"{operation} failed" if failed else "",
            returncode=1 if failed else 0,
        )

    def unit_search_paths(self) -> List[str]:
        return list(self.paths)

    def disable_now(self, unit: str) -> CommandResult:
        return self._result('disable', unit)

    def daemon_reload(self) -> CommandResult:
        self.calls.append(('daemon-reload',))
        return CommandResult(
            command_text="systemctl daemon-reload",
            succeeded=not self.reload_fails,
            stderr="reload failed" if self.reload_fails else "",
        )

    def enable(self, unit: str) -> CommandResult:
        return self._result('enable', unit)

    def restart(self, unit: str) -> CommandResult:
        return self._result('restart', unit)

    def operations(self, name: str) -> List[str]:
        return [call[1] for call in self.calls if call[0] == name]


def make_job(key: str, repository: str = "/srv/restic/repo", **overrides) -> JobSpec:
    kind = JobKind(key.split(':', 1)[0])
    data = {
        'key': key,
        'kind': kind,
        'repository': repository,
        'retention': RetentionPolicy(daily=7, weekly=4, monthly=6),
    }
    if kind == JobKind.DIRECTORY:
        data['directory'] = f"/data/{key.split(':', 1)[1]}"
    else:
        data['database'] = key.split(':', 1)[1]
    data.update(overrides)
    return JobSpec(**data)


@pytest.fixture
def fake_executor() -> FakeExecutor:
    return FakeExecutor()


@pytest.fixture
def unit_dir(tmp_path: Path) -> Path:
    path = tmp_path / "systemd"
    path.mkdir()
    return path


@pytest.fixture
def service_manager(unit_dir: Path) -> FakeServiceManager:
    return FakeServiceManager([str(unit_dir)])


@pytest.fixture
def jobs() -> List[JobSpec]:
    return [
        make_job("mysql:orders", repository="/srv/restic/db"),
        make_job("dir:home", repository="/srv/restic/home"),
        make_job("dir:my backup", repository="/srv/restic/home", prune_interval_days=7),
    ]
