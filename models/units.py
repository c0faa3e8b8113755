"""
Systemd unit models
Desired unit files per job and the plan/result of a reconciliation pass
"""
import re
from dataclasses import dataclass, field
from typing import Dict, List, Set, Tuple

from jinja2 import Environment

from models.jobs import UNIT_PREFIX, JobSpec, backup_unit_name, prune_unit_name


SERVICE_SUFFIX = ".service"
TIMER_SUFFIX = ".timer"
UNIT_SUFFIXES = (SERVICE_SUFFIX, TIMER_SUFFIX)

BACKUP_SERVICE_TEMPLATE = """[Unit]
Description=Resticara backup for {{ key }}

[Service]
Type=oneshot
ExecStart={{ exec_start }}

[Install]
WantedBy=multi-user.target
"""

BACKUP_TIMER_TEMPLATE = """[Unit]
Description=Resticara backup timer for {{ key }}

[Timer]
OnCalendar=daily
Persistent=true

[Install]
WantedBy=timers.target
"""

PRUNE_SERVICE_TEMPLATE = """[Unit]
Description=Resticara prune for {{ key }}

[Service]
Type=oneshot
ExecStart={{ exec_start }}

[Install]
WantedBy=multi-user.target
"""

PRUNE_TIMER_TEMPLATE = """[Unit]
Description=Resticara prune timer for {{ key }}

[Timer]
OnUnitActiveSec={{ prune_days }}d
Persistent=true

[Install]
WantedBy=timers.target
"""

_jinja_env = Environment(keep_trailing_newline=True, autoescape=False)
_TEMPLATES = {
    'backup_service': _jinja_env.from_string(BACKUP_SERVICE_TEMPLATE),
    'backup_timer': _jinja_env.from_string(BACKUP_TIMER_TEMPLATE),
    'prune_service': _jinja_env.from_string(PRUNE_SERVICE_TEMPLATE),
    'prune_timer': _jinja_env.from_string(PRUNE_TIMER_TEMPLATE),
}

_NEEDS_QUOTING = re.compile(r'[\s"\'\\;]')


def escape_specifiers(value: str) -> str:
    """Escape characters systemd would expand inside unit files"""
    return value.replace('%', '%%')


def quote_exec_arg(arg: str) -> str:
    """Quote one ExecStart argument the way systemd's command line parser expects"""
    arg = escape_specifiers(arg).replace('$', '$$')
    if not arg or _NEEDS_QUOTING.search(arg):
        return '"' + arg.replace('\\', '\\\\').replace('"', '\\"') + '"'
    return arg


def build_exec_start(*argv: str) -> str:
    return ' '.join(quote_exec_arg(arg) for arg in argv)


@dataclass
class UnitDescriptor:
    """The four unit files generated for one job"""
    job_key: str
    sanitized_name: str
    backup_service: str
    backup_timer: str
    prune_service: str
    prune_timer: str
    prune_interval_days: int

    @property
    def backup_unit(self) -> str:
        return f"{UNIT_PREFIX}{self.sanitized_name}"

    @property
    def prune_unit(self) -> str:
        return f"{UNIT_PREFIX}{self.sanitized_name}-prune"

    @property
    def unit_names(self) -> List[str]:
        return [self.backup_unit, self.prune_unit]

    @property
    def timers(self) -> List[str]:
        return [self.backup_unit + TIMER_SUFFIX, self.prune_unit + TIMER_SUFFIX]

    def files(self) -> Dict[str, str]:
        """Unit filename -> content, in write order"""
        return {
            self.backup_unit + SERVICE_SUFFIX: self.backup_service,
            self.backup_unit + TIMER_SUFFIX: self.backup_timer,
            self.prune_unit + SERVICE_SUFFIX: self.prune_service,
            self.prune_unit + TIMER_SUFFIX: self.prune_timer,
        }

    @classmethod
    def for_job(cls, job: JobSpec, resticara_bin: str, default_prune_days: int) -> 'UnitDescriptor':
        prune_days = job.effective_prune_interval(default_prune_days)
        key = escape_specifiers(job.key)
        return cls(
            job_key=job.key,
            sanitized_name=job.sanitized_name,
            backup_service=_TEMPLATES['backup_service'].render(
                key=key, exec_start=build_exec_start(resticara_bin, 'run', job.key)
            ),
            backup_timer=_TEMPLATES['backup_timer'].render(key=key),
            prune_service=_TEMPLATES['prune_service'].render(
                key=key, exec_start=build_exec_start(resticara_bin, 'prune', job.repository)
            ),
            prune_timer=_TEMPLATES['prune_timer'].render(key=key, prune_days=prune_days),
            prune_interval_days=prune_days,
        )


@dataclass
class ReconciliationPlan:
    """Desired versus existing unit names for one reconciliation pass"""
    expected_names: Set[str]
    existing_names: Set[str]
    to_write: List[UnitDescriptor]

    @property
    def stale_names(self) -> Set[str]:
        return self.existing_names - self.expected_names


@dataclass
class ReconciliationResult:
    """What a reconciliation pass changed and which best-effort steps failed"""
    unit_dir: str
    written_files: List[str] = field(default_factory=list)
    removed_units: List[str] = field(default_factory=list)
    cleanup_errors: Dict[str, str] = field(default_factory=dict)
    activation_errors: Dict[str, str] = field(default_factory=dict)

    @property
    def activated_timers(self) -> int:
        timers = [name for name in self.written_files if name.endswith(TIMER_SUFFIX)]
        return len([t for t in timers if t not in self.activation_errors])


def expected_unit_names(jobs: List[JobSpec]) -> Set[str]:
    names = set()
    for job in jobs:
        names.add(backup_unit_name(job.key))
        names.add(prune_unit_name(job.key))
    return names


def find_unit_name_collisions(jobs: List[JobSpec]) -> List[Tuple[str, str, str]]:
    """(unit name, first key, second key) for every unit name claimed by two jobs"""
    owners: Dict[str, str] = {}
    collisions = []
    for job in jobs:
        for name in (backup_unit_name(job.key), prune_unit_name(job.key)):
            owner = owners.setdefault(name, job.key)
            if owner != job.key:
                collisions.append((name, owner, job.key))
    return collisions


def unit_base_name(filename: str) -> str:
    """Strip the .service/.timer suffix from a unit filename"""
    for suffix in UNIT_SUFFIXES:
        if filename.endswith(suffix):
            return filename[:-len(suffix)]
    return filename


def is_managed_unit_file(filename: str) -> bool:
    return filename.startswith(UNIT_PREFIX) and filename.endswith(UNIT_SUFFIXES)
