"""
Execution results
Per-command, per-job and per-run outcome records
"""
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


SUCCESS_MESSAGE = "Backup successful"
FAILURE_MESSAGE = "BACKUP FAILED! See output above."


class RunStatus(Enum):
    SUCCESS = "success"
    FAILED = "failed"


class CommandResult(BaseModel):
    """Outcome of one command; succeeded only if every process exited 0"""
    command_text: str
    succeeded: bool
    stdout: str = ""
    stderr: str = ""
    returncode: Optional[int] = None
    error_message: Optional[str] = None

    @property
    def combined_output(self) -> str:
        """Output as shown in reports: stdout followed by stderr"""
        return f"{self.stdout}\nStderr: {self.stderr}"


class JobResult(BaseModel):
    """Backup and retention outcome for a single job"""
    job_key: str
    backup_result: CommandResult
    retention_result: CommandResult

    @property
    def succeeded(self) -> bool:
        return self.backup_result.succeeded and self.retention_result.succeeded


class RunReport(BaseModel):
    """Summary of one invocation of the backup runner"""
    host_id: str
    timestamp: str
    job_results: List[JobResult] = Field(default_factory=list)
    status: RunStatus

    @property
    def succeeded(self) -> bool:
        return self.status == RunStatus.SUCCESS

    @property
    def status_message(self) -> str:
        return SUCCESS_MESSAGE if self.succeeded else FAILURE_MESSAGE

    @property
    def failed_jobs(self) -> List[str]:
        return [result.job_key for result in self.job_results if not result.succeeded]

    @property
    def subject(self) -> str:
        return f"{self.status_message}---{self.timestamp}"
