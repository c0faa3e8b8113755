"""
Report template service
Renders the run report into a human-readable message body with Jinja2
"""
import os
from typing import Any, Dict, List, Optional

from jinja2 import Environment, FileSystemLoader, TemplateError

from config import search_for_file
from models.jobs import ResticaraError
from models.results import RunReport


MAIL_TEMPLATE_SEARCH_PATHS = [
    "./templates/mail_template.txt",
    "/etc/resticara/templates/mail_template.txt",
    os.path.join(os.path.expanduser("~"), ".config/resticara/mail_template.txt"),
]

DEFAULT_MAIL_TEMPLATE = """Resticara backup report
=======================
Host ID: {{ host_id }}
Date: {{ date }}
Status: {{ status_message }}
{% for command in commands %}
---------------
Command Key: {{ command.command_key }}
Backup Command: {{ command.backup_cmd }}
Backup Output:
{{ command.backup_output | trim }}
Forget Command: {{ command.forget_cmd }}
Forget Output:
{{ command.forget_output | trim }}
{% endfor %}
"""


class TemplateRenderError(ResticaraError):
    """The mail template could not be loaded or rendered"""


class ReportTemplateService:
    """Loads the mail template (custom file or built-in default) and renders reports"""

    def __init__(self, template_path: Optional[str] = None):
        self.template_path = template_path
        if template_path:
            directory, self.template_name = os.path.split(os.path.abspath(template_path))
            self.jinja_env = Environment(
                loader=FileSystemLoader(directory),
                keep_trailing_newline=True,
                autoescape=False,
            )
        else:
            self.template_name = None
            self.jinja_env = Environment(keep_trailing_newline=True, autoescape=False)

    @classmethod
    def discover(cls, custom_path: Optional[str] = None) -> 'ReportTemplateService':
        if custom_path and not os.path.exists(custom_path):
            raise TemplateRenderError(f"mail template {custom_path} does not exist")
        return cls(search_for_file(custom_path, MAIL_TEMPLATE_SEARCH_PATHS))

    def render(self, report: RunReport) -> str:
        try:
            if self.template_name:
                template = self.jinja_env.get_template(self.template_name)
            else:
                template = self.jinja_env.from_string(DEFAULT_MAIL_TEMPLATE)
            return template.render(**self.build_context(report))
        except TemplateError as e:
            raise TemplateRenderError(f"Template rendering failed: {e}") from e

    @staticmethod
    def build_context(report: RunReport) -> Dict[str, Any]:
        commands: List[Dict[str, str]] = []
        for job_result in report.job_results:
            commands.append({
                'command_key': job_result.job_key,
                'backup_cmd': job_result.backup_result.command_text,
                'backup_output': job_result.backup_result.combined_output,
                'forget_cmd': job_result.retention_result.command_text,
                'forget_output': job_result.retention_result.combined_output,
                'succeeded': job_result.succeeded,
            })
        return {
            'host_id': report.host_id,
            'date': report.timestamp,
            'commands': commands,
            'status_message': report.status_message,
            'report': report,
        }
