"""
Systemd service manager adapter
Thin wrapper over systemctl, executed through a CommandExecutor
"""
import logging
import re
from abc import ABC, abstractmethod
from typing import List, Optional

from models.builders import Command
from models.results import CommandResult
from services.execution import CommandExecutor, SubprocessExecutor

logger = logging.getLogger(__name__)


class ServiceManagerError(Exception):
    """The service manager could not be queried"""


class ServiceManager(ABC):
    """Operations the unit reconciler needs from the host's service manager"""

    @abstractmethod
    def unit_search_paths(self) -> List[str]:
        """Directories the service manager loads unit files from, in priority order"""

    @abstractmethod
    def disable_now(self, unit: str) -> CommandResult:
        """Stop and disable a unit"""

    @abstractmethod
    def daemon_reload(self) -> CommandResult:
        """Reload unit definitions from disk"""

    @abstractmethod
    def enable(self, unit: str) -> CommandResult:
        pass

    @abstractmethod
    def restart(self, unit: str) -> CommandResult:
        pass


class SystemctlServiceManager(ServiceManager):
    """ServiceManager backed by the systemctl binary"""

    def __init__(self, executor: Optional[CommandExecutor] = None, systemctl_bin: str = "systemctl"):
        self.executor = executor or SubprocessExecutor()
        self.systemctl_bin = systemctl_bin

    def _systemctl(self, *args: str) -> CommandResult:
        result = self.executor.run(Command([self.systemctl_bin, *args]))
        if not result.succeeded:
            logger.debug(f"{result.command_text} failed: {result.stderr.strip()}")
        return result

    def unit_search_paths(self) -> List[str]:
        result = self._systemctl('show', '--property=UnitPath')
        if not result.succeeded:
            raise ServiceManagerError(
                f"failed to retrieve systemd unit path: {result.stderr.strip() or result.error_message}"
            )
        return parse_unit_path(result.stdout)

    def disable_now(self, unit: str) -> CommandResult:
        return self._systemctl('disable', '--now', unit)

    def daemon_reload(self) -> CommandResult:
        return self._systemctl('daemon-reload')

    def enable(self, unit: str) -> CommandResult:
        return self._systemctl('enable', unit)

    def restart(self, unit: str) -> CommandResult:
        return self._systemctl('restart', unit)


def parse_unit_path(output: str) -> List[str]:
    """Split 'UnitPath=/a /b:/c' into its non-empty paths"""
    line = output.strip()
    if line.startswith('UnitPath='):
        line = line[len('UnitPath='):]
    return [path for path in re.split(r'[:\s]+', line) if path]
