"""
Operations handler
Wires configuration, runners and reporting together for each CLI command
"""

import logging
from typing import Optional

from rich.console import Console

from config import ResticaraConfig
from models.notifications import NotificationService
from models.results import RunReport
from models.units import ReconciliationResult
from services.backup_runner import BackupRunner, RepositoryPruner
from services.execution import CommandExecutor, SubprocessExecutor
from services.summary import SummaryPrinter, create_syslog_logger
from services.systemd import ServiceManager, SystemctlServiceManager
from services.template import ReportTemplateService
from services.unit_reconciler import UnitReconciler

logger = logging.getLogger(__name__)


class OperationsHandler:
    """Runs backups, prunes repositories and generates timers for one config"""

    def __init__(self, config: ResticaraConfig,
                 executor: Optional[CommandExecutor] = None,
                 service_manager: Optional[ServiceManager] = None,
                 console: Optional[Console] = None):
        self.config = config
        self.executor = executor or SubprocessExecutor()
        self.service_manager = service_manager or SystemctlServiceManager(self.executor)
        self.console = console or Console(highlight=False, soft_wrap=True)

    # =============================================================================
    # BACKUP OPERATIONS
    # =============================================================================

    def run_backups(self, job_key: Optional[str] = None,
                    template_service: Optional[ReportTemplateService] = None,
                    notification_service: Optional[NotificationService] = None) -> RunReport:
        """Run all or one job, print the summary and send notifications"""
        runner = BackupRunner(self.config.jobs, self.executor, host_id=self.config.host_id)
        # Rejects unknown keys before the template is even loaded
        runner.select_jobs(job_key)

        template_service = template_service or ReportTemplateService()
        notification_service = notification_service or NotificationService(
            self.config.get_notification_settings()
        )

        report = runner.run(
            job_key,
            on_job_start=lambda key: self.console.print(f"Executing command {key}", markup=False),
        )
        logger.info(f"Run finished with status {report.status.value}")
        syslog = create_syslog_logger() if self.config.syslog_enabled else None
        SummaryPrinter(self.console, syslog).print_summary(report)

        body = template_service.render(report)

        self._send_notifications(notification_service, report.subject, body)
        return report

    def _send_notifications(self, notification_service: NotificationService, subject: str, body: str):
        if not notification_service.list_enabled_providers():
            self.console.print("No notification providers enabled, not sending notifications.")
            return

        for result in notification_service.send_report(subject, body):
            if result.success:
                self.console.print(f"Notification sent via {result.provider}!", markup=False)
            else:
                self.console.print(
                    f"Notification via {result.provider} failed: {result.error_message}", markup=False
                )

    # =============================================================================
    # MAINTENANCE OPERATIONS
    # =============================================================================

    def prune_repositories(self, target: str) -> bool:
        """Prune one repository or all of them; True if every prune succeeded"""
        pruner = RepositoryPruner(self.config.jobs, self.executor)
        results = pruner.prune(
            target,
            on_repository_start=lambda repo: self.console.print(f"Pruning repository {repo}", markup=False),
        )

        all_success = True
        for repository, result in results.items():
            self.console.print(result.stdout, end="", markup=False)
            if result.stderr:
                self.console.print(f"Stderr: {result.stderr}", markup=False)
            if not result.succeeded:
                self.console.print(f"Prune failed for {repository}", markup=False)
                all_success = False
                logger.warning(f"Prune of {repository} exited with {result.returncode}")
        return all_success

    def generate_timers(self) -> ReconciliationResult:
        reconciler = UnitReconciler(
            self.service_manager,
            resticara_bin=self.config.resticara_bin,
            default_prune_days=self.config.retention_prune,
            unit_dir=self.config.unit_dir,
        )
        result = reconciler.reconcile(self.config.jobs)

        for name, message in result.cleanup_errors.items():
            self.console.print(f"Warning: stale unit {name}: {message}", markup=False)
        for timer, message in result.activation_errors.items():
            self.console.print(f"Warning: {message}", markup=False)

        self.console.print(
            f"Systemd timer files written to {result.unit_dir} and activated.", markup=False
        )
        return result
