#!/usr/bin/env python3
"""
Configuration manager for resticara
Loads the YAML config, fills ${VAR} placeholders from a dotenv secrets file
and validates job definitions
"""
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import validators
import yaml
from dotenv import dotenv_values
from pydantic import ValidationError

from models.jobs import DEFAULT_PRUNE_INTERVAL_DAYS, ConfigError, JobSpec, parse_job_kind
from models.units import find_unit_name_collisions


CONFIG_SEARCH_PATHS = [
    "./config.yaml",
    "/etc/resticara/config.yaml",
    os.path.join(os.path.expanduser("~"), ".config/resticara/config.yaml"),
]

SECRETS_FILENAME = "secrets.env"

RETENTION_FIELDS = {
    'retention_daily': 'daily',
    'retention_weekly': 'weekly',
    'retention_monthly': 'monthly',
}

DEFAULT_GENERAL_SETTINGS = {
    'host_id': 'hostname',
    'retention_prune': DEFAULT_PRUNE_INTERVAL_DAYS,
    'resticara_bin': '/usr/local/bin/resticara',
    'unit_dir': None,
    'syslog': True,
}


def search_for_file(custom_path: Optional[str], default_locations: List[str]) -> Optional[str]:
    """Return the custom path if given, else the first existing default location"""
    if custom_path:
        return custom_path
    for location in default_locations:
        if os.path.exists(location):
            return location
    return None


class ResticaraConfig:
    """Manages the resticara configuration in YAML format"""

    def __init__(self, config_file: str, secrets_file: Optional[str] = None):
        self.config_file = config_file
        self.secrets_file = secrets_file or str(Path(config_file).parent / SECRETS_FILENAME)
        self.config = self.load_config()
        self.jobs = self._build_jobs(self.config.get('jobs') or {})

    @classmethod
    def discover(cls, custom_path: Optional[str] = None) -> 'ResticaraConfig':
        config_path = search_for_file(custom_path, CONFIG_SEARCH_PATHS)
        if not config_path:
            raise ConfigError("config.yaml not found in any of the expected locations")
        return cls(config_path)

    def load_config(self) -> Dict[str, Any]:
        """Load settings and merge dotenv secrets into ${VAR} placeholders"""
        if not os.path.exists(self.config_file):
            raise ConfigError(f"config file {self.config_file} does not exist")

        try:
            with open(self.config_file, 'r') as f:
                content = f.read()
            settings = yaml.safe_load(content) if content.strip() else {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"could not load {self.config_file}: {e}") from e

        if settings is None:
            settings = {}
        if not isinstance(settings, dict):
            raise ConfigError(f"{self.config_file} must contain a mapping at the top level")

        if os.path.exists(self.secrets_file):
            secrets = dotenv_values(self.secrets_file)
            settings = self._merge_secrets(settings, secrets)

        return settings

    def _merge_secrets(self, config, secrets):
        """Merge secrets into config by replacing ${VAR} placeholders"""
        def replace_vars(obj):
            if isinstance(obj, str):
                for key, value in secrets.items():
                    if value is not None:
                        obj = obj.replace(f"${{{key}}}", value)
                return obj
            elif isinstance(obj, dict):
                return {k: replace_vars(v) for k, v in obj.items()}
            elif isinstance(obj, list):
                return [replace_vars(item) for item in obj]
            else:
                return obj

        return replace_vars(config)

    # =============================================================================
    # GENERAL SETTINGS
    # =============================================================================

    def get_general_settings(self) -> Dict[str, Any]:
        settings = dict(DEFAULT_GENERAL_SETTINGS)
        settings.update(self.config.get('general') or {})
        return settings

    @property
    def host_id(self) -> str:
        return str(self.get_general_settings()['host_id'])

    @property
    def retention_prune(self) -> int:
        value = self.get_general_settings()['retention_prune']
        try:
            days = int(value)
        except (TypeError, ValueError):
            raise ConfigError("'retention_prune' in general must be an integer") from None
        if days <= 0:
            raise ConfigError("'retention_prune' in general must be positive")
        return days

    @property
    def resticara_bin(self) -> str:
        return self.get_general_settings()['resticara_bin']

    @property
    def unit_dir(self) -> Optional[str]:
        return self.get_general_settings()['unit_dir']

    @property
    def syslog_enabled(self) -> bool:
        return bool(self.get_general_settings()['syslog'])

    def get_notification_settings(self) -> Dict[str, Any]:
        notification = self.config.get('notification') or {}
        email = notification.get('email') or {}
        if email.get('enabled'):
            for field in ('from_email', 'to_email'):
                address = email.get(field)
                if not address or not validators.email(address):
                    raise ConfigError(f"notification.email.{field} is not a valid email address: {address}")
        return notification

    # =============================================================================
    # JOBS
    # =============================================================================

    def get_job(self, job_key: str) -> Optional[JobSpec]:
        for job in self.jobs:
            if job.key == job_key:
                return job
        return None

    def _build_jobs(self, raw_jobs: Dict[str, Any]) -> List[JobSpec]:
        if not isinstance(raw_jobs, dict):
            raise ConfigError("'jobs' must be a mapping of job key to settings")

        jobs = []
        for job_key in sorted(raw_jobs):
            settings = raw_jobs[job_key] or {}
            jobs.append(self._build_job(str(job_key), settings))

        collisions = find_unit_name_collisions(jobs)
        if collisions:
            name, first, second = collisions[0]
            raise ConfigError(f"Jobs {first} and {second} both map to systemd unit {name}")
        return jobs

    def _build_job(self, job_key: str, settings: Dict[str, Any]) -> JobSpec:
        try:
            kind = parse_job_kind(job_key)
        except ValueError as e:
            raise ConfigError(str(e)) from None

        retention = {}
        for field, target in RETENTION_FIELDS.items():
            retention[target] = self._require_int(job_key, field, settings.get(field))

        prune_days = None
        if settings.get('retention_prune') is not None:
            prune_days = self._require_int(job_key, 'retention_prune', settings['retention_prune'])

        data = {
            'key': job_key,
            'kind': kind,
            'repository': settings.get('repository', settings.get('bucket')),
            'directory': settings.get('directory'),
            'database': settings.get('database'),
            'retention': retention,
            'prune_interval_days': prune_days,
            'password_file': settings.get('password_file'),
            'environment': {str(k): str(v) for k, v in (settings.get('environment') or {}).items()},
        }
        try:
            return JobSpec.model_validate(data)
        except ValidationError as e:
            raise ConfigError(f"invalid job {job_key}: {self._format_validation_error(e)}") from None

    @staticmethod
    def _require_int(job_key: str, field: str, value: Any) -> int:
        if isinstance(value, bool):
            raise ConfigError(f"'{field}' for {job_key} must be an integer")
        try:
            return int(str(value).strip())
        except (TypeError, ValueError):
            raise ConfigError(f"'{field}' for {job_key} must be an integer") from None

    @staticmethod
    def _format_validation_error(error: ValidationError) -> str:
        parts = []
        for item in error.errors():
            location = '.'.join(str(loc) for loc in item['loc'])
            parts.append(f"{location}: {item['msg']}" if location else item['msg'])
        return '; '.join(parts)
