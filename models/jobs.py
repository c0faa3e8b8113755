"""
Job definitions
Validated backup job model consumed by command building and unit generation
"""
from enum import Enum
from typing import Dict, Optional

from pydantic import AliasChoices, BaseModel, Field, model_validator


UNIT_PREFIX = "resticara-"
DEFAULT_PRUNE_INTERVAL_DAYS = 30

# Characters systemd does not accept in our unit names
_UNIT_NAME_REPLACEMENTS = {":": "-", "/": "-", " ": "-"}


class ResticaraError(Exception):
    """Base class for fatal resticara errors"""


class ConfigError(ResticaraError):
    """Configuration file missing, unreadable or invalid"""


class UnknownJobError(ResticaraError):
    """A job key was requested that the configuration does not define"""

    def __init__(self, job_key: str):
        super().__init__(f"Command {job_key} not found in config")
        self.job_key = job_key


class UnknownRepositoryError(ResticaraError):
    """A repository was requested that no job backs up to"""

    def __init__(self, repository: str):
        super().__init__(f"Repository {repository} not found in config")
        self.repository = repository


class JobKind(Enum):
    """Supported backup sources, named by their job key prefix"""
    DIRECTORY = "dir"
    MYSQL = "mysql"


class RetentionPolicy(BaseModel):
    """Snapshot keep-counts passed to restic forget"""
    daily: int = Field(ge=0)
    weekly: int = Field(ge=0)
    monthly: int = Field(ge=0)


class JobSpec(BaseModel):
    """One configured backup target plus its retention policy"""
    key: str
    kind: JobKind
    repository: str = Field(validation_alias=AliasChoices('repository', 'bucket'))
    directory: Optional[str] = None
    database: Optional[str] = None
    retention: RetentionPolicy
    prune_interval_days: Optional[int] = Field(default=None, gt=0)
    password_file: Optional[str] = None
    environment: Dict[str, str] = Field(default_factory=dict)

    @model_validator(mode='after')
    def _check_target(self) -> 'JobSpec':
        if self.kind == JobKind.DIRECTORY and not self.directory:
            raise ValueError(f"'directory' is required for {self.key}")
        if self.kind == JobKind.MYSQL and not self.database:
            raise ValueError(f"'database' is required for {self.key}")
        return self

    @property
    def name(self) -> str:
        return self.key.split(':', 1)[1]

    @property
    def sanitized_name(self) -> str:
        return sanitize_name(self.key)

    def effective_prune_interval(self, default_days: int = DEFAULT_PRUNE_INTERVAL_DAYS) -> int:
        """Job-level prune interval, falling back to the global default"""
        return self.prune_interval_days or default_days


def sanitize_name(key: str) -> str:
    """Turn a job key into a name usable in a unit filename"""
    for char, replacement in _UNIT_NAME_REPLACEMENTS.items():
        key = key.replace(char, replacement)
    return key


def backup_unit_name(key: str) -> str:
    return f"{UNIT_PREFIX}{sanitize_name(key)}"


def prune_unit_name(key: str) -> str:
    return f"{UNIT_PREFIX}{sanitize_name(key)}-prune"


def parse_job_kind(key: str) -> JobKind:
    """Resolve the job kind from the '<kind>:<name>' key format"""
    kind, sep, name = key.partition(':')
    if not sep or not name:
        raise ValueError(f"Job key '{key}' must have the form '<kind>:<name>'")
    try:
        return JobKind(kind)
    except ValueError:
        supported = ', '.join(k.value for k in JobKind)
        raise ValueError(f"Unknown job kind '{kind}' in {key} (supported: {supported})") from None
