"""
Run summary output
Prints the run report to the console and mirrors it to syslog
"""
import logging
import logging.handlers
import os
from typing import Optional

from rich.console import Console
from rich.markup import escape

from models.results import RunReport

logger = logging.getLogger(__name__)

SYSLOG_IDENT = "resticara"
SYSLOG_SOCKET = "/dev/log"


def create_syslog_logger(address: str = SYSLOG_SOCKET) -> Optional[logging.Logger]:
    """Logger that writes only to syslog; None if syslog is unreachable"""
    if not os.path.exists(address):
        logger.warning(f"Syslog socket {address} not found, summary will not be sent to syslog")
        return None
    try:
        handler = logging.handlers.SysLogHandler(address=address)
    except OSError as e:
        logger.warning(f"Failed to initialize syslog writer: {e}")
        return None

    handler.ident = f"{SYSLOG_IDENT}: "
    syslog_logger = logging.getLogger("resticara.summary")
    for previous in list(syslog_logger.handlers):
        syslog_logger.removeHandler(previous)
        previous.close()
    syslog_logger.addHandler(handler)
    syslog_logger.setLevel(logging.INFO)
    syslog_logger.propagate = False
    return syslog_logger


class SummaryPrinter:
    """Console and syslog rendering of a RunReport"""

    def __init__(self, console: Optional[Console] = None, syslog: Optional[logging.Logger] = None):
        self.console = console or Console(highlight=False, soft_wrap=True)
        self.syslog = syslog

    def print_summary(self, report: RunReport):
        if self.syslog:
            self._log_to_syslog(report)

        status_style = "green" if report.succeeded else "red"
        self.console.print("[bold]Backup Summary:[/bold]")
        self.console.print("---------------")
        self.console.print(f"[bold]Host ID:[/bold] {escape(report.host_id)}")
        self.console.print(f"[bold]Date:[/bold] {escape(report.timestamp)}")
        self.console.print(f"[bold]Status:[/bold] [{status_style}]{report.status_message}[/{status_style}]")
        for job_result in report.job_results:
            backup, forget = job_result.backup_result, job_result.retention_result
            self.console.print(f"[bold]Command Key:[/bold] {escape(job_result.job_key)}")
            self._print_field("Backup Command", backup.command_text)
            self._print_field("Backup Output", backup.combined_output.strip())
            if backup.error_message:
                self._print_field("Backup Error", backup.error_message)
            self._print_field("Forget Command", forget.command_text)
            self._print_field("Forget Output", forget.combined_output.strip())
            if forget.error_message:
                self._print_field("Forget Error", forget.error_message)
        self.console.print("---------------")

    def _print_field(self, label: str, value: str):
        self.console.print(f"  [bold]{label}:[/bold] ", end="")
        # Command output is printed verbatim, never parsed as markup
        self.console.print(value, markup=False)

    def _log_to_syslog(self, report: RunReport):
        self.syslog.info(f"Host ID: {report.host_id}")
        self.syslog.info(f"Date: {report.timestamp}")
        self.syslog.info(f"Status: {report.status_message}")
        for job_result in report.job_results:
            backup, forget = job_result.backup_result, job_result.retention_result
            self.syslog.info(f"Command Key: {job_result.job_key}")
            self.syslog.info(f"Backup Command: {backup.command_text}")
            self.syslog.info(f"Backup Output: {backup.combined_output.strip()}")
            self.syslog.info(f"Forget Command: {forget.command_text}")
            self.syslog.info(f"Forget Output: {forget.combined_output.strip()}")
