"""
API token authentication for backup operations via Flask-Login.

Backup routes are called by operators and automation with a bearer token
(`Authorization: Bearer <BACKUP_API_TOKEN>`). There are no user accounts in
this service; a valid token logs the request in as the backup operator.
"""

import hmac
from typing import Optional

from flask import current_app
from flask_login import UserMixin


class BackupOperator(UserMixin):
    """
    Flask-Login identity for a request carrying a valid API token.
    """

    def __init__(self, name: str = 'backup-operator'):
        self.name = name

    def get_id(self):
        """Return operator ID as required by Flask-Login."""
        return self.name


def extract_bearer_token(authorization: Optional[str]) -> Optional[str]:
    """
    Pull the token out of an Authorization header value.

    Returns:
        The token, or None if the header is missing or not a bearer token
    """
    if not authorization:
        return None

    scheme, _, token = authorization.partition(' ')
    if scheme.lower() != 'bearer' or not token.strip():
        return None
    return token.strip()


def verify_api_token(token: Optional[str]) -> bool:
    """
    Compare a presented token against BACKUP_API_TOKEN in constant time.

    An unset BACKUP_API_TOKEN rejects every token.
    """
    expected = current_app.config.get('BACKUP_API_TOKEN')
    if not expected or not token:
        return False
    return hmac.compare_digest(token.encode('utf-8'), expected.encode('utf-8'))


def load_operator_from_request(request) -> Optional[BackupOperator]:
    """Flask-Login request_loader callback."""
    token = extract_bearer_token(request.headers.get('Authorization'))
    if verify_api_token(token):
        return BackupOperator()
    return None
