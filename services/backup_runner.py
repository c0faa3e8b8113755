"""
Backup runner
Runs backup and retention commands for selected jobs and aggregates the outcome
"""
import logging
import socket
from email.utils import formatdate
from typing import Callable, Dict, List, Optional, Sequence

from models.builders import CommandSpecBuilder
from models.jobs import JobSpec, UnknownJobError, UnknownRepositoryError
from models.results import CommandResult, JobResult, RunReport, RunStatus
from services.execution import CommandExecutor

logger = logging.getLogger(__name__)

HOSTNAME_PLACEHOLDER = "hostname"


def resolve_host_id(configured: str) -> str:
    """The literal 'hostname' means: ask the OS"""
    if configured != HOSTNAME_PLACEHOLDER:
        return configured
    try:
        return socket.gethostname()
    except OSError:
        logger.warning("Could not determine hostname, using 'Unknown'")
        return "Unknown"


def rfc1123_now() -> str:
    return formatdate(usegmt=True)


class BackupRunner:
    """Runs jobs one at a time: backup first, then retention, never short-circuiting"""

    def __init__(self, jobs: Sequence[JobSpec], executor: CommandExecutor,
                 host_id: str = HOSTNAME_PLACEHOLDER,
                 builder: Optional[CommandSpecBuilder] = None,
                 clock: Callable[[], str] = rfc1123_now):
        self.jobs: Dict[str, JobSpec] = {job.key: job for job in sorted(jobs, key=lambda j: j.key)}
        self.executor = executor
        self.host_id = host_id
        self.builder = builder or CommandSpecBuilder()
        self.clock = clock

    def select_jobs(self, job_key: Optional[str] = None) -> List[JobSpec]:
        """All jobs in key order, or exactly the requested one"""
        if job_key is None:
            return list(self.jobs.values())
        if job_key not in self.jobs:
            raise UnknownJobError(job_key)
        return [self.jobs[job_key]]

    def run(self, job_key: Optional[str] = None,
            on_job_start: Optional[Callable[[str], None]] = None) -> RunReport:
        # Validate the selection before anything executes
        selected = self.select_jobs(job_key)

        report = RunReport(
            host_id=resolve_host_id(self.host_id),
            timestamp=self.clock(),
            status=RunStatus.SUCCESS,
        )
        all_success = True

        for job in selected:
            if on_job_start:
                on_job_start(job.key)
            job_result = self.run_job(job)
            report.job_results.append(job_result)
            all_success = all_success and job_result.succeeded

        report.status = RunStatus.SUCCESS if all_success else RunStatus.FAILED
        logger.info(f"Run finished for {len(selected)} job(s): {report.status.value}")
        return report

    def run_job(self, job: JobSpec) -> JobResult:
        logger.info(f"Executing command {job.key}")
        backup_command, retention_command = self.builder.build_commands(job)

        backup_result = self.executor.run(backup_command)
        if not backup_result.succeeded:
            logger.error(f"Backup failed for {job.key}: {backup_result.command_text}")

        retention_result = self.executor.run(retention_command)
        if not retention_result.succeeded:
            logger.error(f"Retention failed for {job.key}: {retention_result.command_text}")

        return JobResult(
            job_key=job.key,
            backup_result=backup_result,
            retention_result=retention_result,
        )


class RepositoryPruner:
    """Runs restic prune against one or all repositories referenced by jobs"""

    ALL = "all"

    def __init__(self, jobs: Sequence[JobSpec], executor: CommandExecutor,
                 builder: Optional[CommandSpecBuilder] = None):
        self.executor = executor
        self.builder = builder or CommandSpecBuilder()
        # First job per repository supplies the credentials used for pruning it
        self.repositories: Dict[str, JobSpec] = {}
        for job in sorted(jobs, key=lambda j: j.key):
            self.repositories.setdefault(job.repository, job)

    def select_repositories(self, target: str) -> List[str]:
        if target == self.ALL:
            return sorted(self.repositories)
        if target not in self.repositories:
            raise UnknownRepositoryError(target)
        return [target]

    def prune(self, target: str,
              on_repository_start: Optional[Callable[[str], None]] = None) -> Dict[str, CommandResult]:
        results: Dict[str, CommandResult] = {}
        for repository in self.select_repositories(target):
            if on_repository_start:
                on_repository_start(repository)
            job = self.repositories[repository]
            command = self.builder.build_prune_command(
                repository, self.builder.arguments.build_environment(job)
            )
            result = self.executor.run(command)
            if not result.succeeded:
                logger.error(f"Prune failed for {repository}")
            results[repository] = result
        return results
