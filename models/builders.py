"""
Backup Command Builders
Turns job definitions into structured restic and mysqldump invocations
"""
import shlex
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple, Union

from models.jobs import JobKind, JobSpec


RESTIC_BINARY = "restic"
MYSQLDUMP_BINARY = "mysqldump"


@dataclass(frozen=True)
class Command:
    """A single external process invocation"""
    argv: List[str]
    env: Dict[str, str] = field(default_factory=dict)

    @property
    def command_text(self) -> str:
        return shlex.join(self.argv)


@dataclass(frozen=True)
class PipedCommand:
    """Two invocations where the producer's stdout feeds the consumer's stdin"""
    producer: Command
    consumer: Command

    @property
    def command_text(self) -> str:
        return f"{self.producer.command_text} | {self.consumer.command_text}"


CommandSpec = Union[Command, PipedCommand]


class ResticArgumentBuilder:
    """Builds restic command arguments for backup, forget and prune"""

    @staticmethod
    def build_environment(job: JobSpec) -> Dict[str, str]:
        """Extra environment for restic; merged over the process environment at run time"""
        env = dict(job.environment)
        if job.password_file:
            env['RESTIC_PASSWORD_FILE'] = job.password_file
        return env

    @staticmethod
    def build_backup_args(repository: str, target: str) -> List[str]:
        return [RESTIC_BINARY, '-r', repository, 'backup', target]

    @staticmethod
    def build_stdin_backup_args(repository: str, stdin_filename: str) -> List[str]:
        return [RESTIC_BINARY, '-r', repository, 'backup', '--stdin', '--stdin-filename', stdin_filename]

    @staticmethod
    def build_forget_args(repository: str, daily: int, weekly: int, monthly: int) -> List[str]:
        return [
            RESTIC_BINARY, '-r', repository, 'forget',
            '--keep-daily', str(daily),
            '--keep-weekly', str(weekly),
            '--keep-monthly', str(monthly),
        ]

    @staticmethod
    def build_prune_args(repository: str) -> List[str]:
        return [RESTIC_BINARY, '-r', repository, 'prune']


class CommandSpecBuilder:
    """Maps a job to its backup and retention commands without side effects"""

    def __init__(self, argument_builder: Optional[ResticArgumentBuilder] = None):
        self.arguments = argument_builder or ResticArgumentBuilder()

    def build_commands(self, job: JobSpec) -> Tuple[CommandSpec, Command]:
        """Return (backup command, retention command) for the job"""
        return self.build_backup_command(job), self.build_retention_command(job)

    def build_backup_command(self, job: JobSpec) -> CommandSpec:
        env = self.arguments.build_environment(job)

        if job.kind == JobKind.DIRECTORY:
            return Command(self.arguments.build_backup_args(job.repository, job.directory), env)

        if job.kind == JobKind.MYSQL:
            dump = Command([MYSQLDUMP_BINARY, job.database])
            store = Command(
                self.arguments.build_stdin_backup_args(job.repository, f"{job.database}.sql"),
                env,
            )
            return PipedCommand(producer=dump, consumer=store)

        raise ValueError(f"Unsupported job kind: {job.kind}")

    def build_retention_command(self, job: JobSpec) -> Command:
        retention = job.retention
        return Command(
            self.arguments.build_forget_args(
                job.repository, retention.daily, retention.weekly, retention.monthly
            ),
            self.arguments.build_environment(job),
        )

    def build_prune_command(self, repository: str, env: Optional[Dict[str, str]] = None) -> Command:
        return Command(self.arguments.build_prune_args(repository), dict(env or {}))
