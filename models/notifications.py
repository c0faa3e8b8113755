"""
Notifications
Sends the rendered run report through email, Telegram and Matrix
"""

import logging
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import requests
from notifiers import get_notifier
from notifiers.exceptions import NotifierException

logger = logging.getLogger(__name__)

MATRIX_TIMEOUT_SECONDS = 30

# =============================================================================
# PROVIDER SCHEMAS
# =============================================================================

PROVIDER_REQUIRED_FIELDS = {
    'email': ['smtp_server', 'smtp_port', 'from_email', 'to_email'],
    'telegram': ['token', 'chat_id'],
    'matrix': ['homeserver', 'username', 'password', 'room_id'],
}


@dataclass
class NotificationResult:
    """Result of notification attempt"""
    provider: str
    success: bool
    error_message: Optional[str] = None


class NotificationError(Exception):
    """A provider rejected or failed to deliver a message"""


# =============================================================================
# PROVIDERS
# =============================================================================

class NotifiersProvider:
    """Email and Telegram delivery through the notifiers library"""

    def __init__(self, provider_name: str, config: Dict[str, Any]):
        self.provider_name = provider_name
        self.config = config

    def build_arguments(self, subject: str, body: str) -> Dict[str, Any]:
        if self.provider_name == 'telegram':
            return {
                'token': self.config['token'],
                'chat_id': self.config['chat_id'],
                'message': f"{subject}\n\n{body}",
            }
        if self.provider_name == 'email':
            return {
                'to': self.config['to_email'],
                'from_': self.config['from_email'],
                'subject': subject,
                'message': body,
                'host': self.config['smtp_server'],
                'port': int(self.config.get('smtp_port', 587)),
                'username': self.config.get('username'),
                'password': self.config.get('password'),
                'tls': self.config.get('use_tls', True),
                'ssl': self.config.get('use_ssl', False),
                'login': bool(self.config.get('username')),
                'html': False,
            }
        raise NotificationError(f"Unknown provider: {self.provider_name}")

    def send(self, subject: str, body: str):
        notifier = get_notifier(self.provider_name)
        result = notifier.notify(**self.build_arguments(subject, body))
        if str(result.status).lower() != 'success':
            errors = getattr(result, 'errors', None) or ['Unknown error']
            raise NotificationError(f"Provider error: {', '.join(map(str, errors))}")


class MatrixProvider:
    """Matrix delivery via the client-server HTTP API"""

    provider_name = 'matrix'

    def __init__(self, config: Dict[str, Any], session: Optional[requests.Session] = None):
        self.config = config
        self.session = session or requests.Session()
        self.homeserver = config['homeserver'].rstrip('/')

    def _url(self, path: str) -> str:
        return f"{self.homeserver}/_matrix/client/v3{path}"

    def login(self) -> str:
        response = self.session.post(
            self._url('/login'),
            json={
                'type': 'm.login.password',
                'identifier': {'type': 'm.id.user', 'user': self.config['username']},
                'password': self.config['password'],
            },
            timeout=MATRIX_TIMEOUT_SECONDS,
        )
        if response.status_code != 200:
            raise NotificationError(f"failed to login: HTTP {response.status_code} {response.text}")
        return response.json()['access_token']

    def send(self, subject: str, body: str):
        token = self.login()
        headers = {'Authorization': f"Bearer {token}"}
        room = quote(self.config['room_id'], safe='')

        # Joining fails harmlessly when already a member
        join = self.session.post(self._url(f"/join/{room}"), headers=headers, json={},
                                 timeout=MATRIX_TIMEOUT_SECONDS)
        if join.status_code != 200:
            logger.debug(f"Matrix join returned HTTP {join.status_code}, continuing")

        response = self.session.put(
            self._url(f"/rooms/{room}/send/m.room.message/{uuid.uuid4().hex}"),
            headers=headers,
            json={'msgtype': 'm.text', 'body': f"{subject}\n\n{body}"},
            timeout=MATRIX_TIMEOUT_SECONDS,
        )
        if response.status_code != 200:
            raise NotificationError(f"failed to send message: HTTP {response.status_code} {response.text}")


# =============================================================================
# NOTIFICATION SERVICE
# =============================================================================

class NotificationService:
    """Sends report notifications via every enabled provider"""

    def __init__(self, notification_config: Dict[str, Any]):
        self.notification_config = notification_config or {}

    def list_enabled_providers(self) -> List[str]:
        enabled = []
        for provider_name, config in self.notification_config.items():
            if isinstance(config, dict) and config.get('enabled', False):
                enabled.append(provider_name)
        return enabled

    def get_provider(self, provider_name: str):
        config = self.notification_config.get(provider_name, {})
        if provider_name not in PROVIDER_REQUIRED_FIELDS:
            raise NotificationError(f"Unknown notification provider: {provider_name}")

        for field in PROVIDER_REQUIRED_FIELDS[provider_name]:
            if not config.get(field):
                raise NotificationError(f"{provider_name} provider missing required field: {field}")

        if provider_name == 'matrix':
            return MatrixProvider(config)
        return NotifiersProvider(provider_name, config)

    def send_report(self, subject: str, body: str) -> List[NotificationResult]:
        results = []
        for provider_name in self.list_enabled_providers():
            try:
                self.get_provider(provider_name).send(subject, body)
                results.append(NotificationResult(provider_name, True))
            except (NotificationError, NotifierException, requests.RequestException, KeyError, ValueError) as e:
                logger.error(f"Notification send error for {provider_name}: {e}")
                results.append(NotificationResult(provider_name, False, str(e)))
        return results
