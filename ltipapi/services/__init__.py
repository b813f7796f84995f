"""LTIPAPI SERVICES MODULE"""

import logging
import sys

logger = logging.getLogger()


def handle_exception(exc_type, exc_value, exc_traceback):
    if issubclass(exc_type, KeyboardInterrupt):
        sys.__excepthook__(exc_type, exc_value, exc_traceback)
        return
    logger.critical("Uncaught exception", exc_info=(exc_type, exc_value, exc_traceback))


sys.excepthook = handle_exception

from ltipapi.services.audit_service import AuditService  # noqa: E402
from ltipapi.services.password_service import PasswordService  # noqa: E402
from ltipapi.services.token_service import TokenService  # noqa: E402
from ltipapi.services.account_lockout_service import (  # noqa: E402
    AccountLockoutService,
    get_account_lockout_service,
)
from ltipapi.services.csrf_service import (  # noqa: E402
    CsrfTokenService,
    get_csrf_token_service,
)

# Import last, it depends on every service above
from ltipapi.services.auth_service import AuthService  # noqa:E402, isort:skip
from ltipapi.services.oauth_service import (  # noqa:E402, isort:skip
    OAuthService,
    get_oauth_service,
)

__all__ = [
    "AccountLockoutService",
    "AuditService",
    "AuthService",
    "CsrfTokenService",
    "OAuthService",
    "PasswordService",
    "TokenService",
    "get_account_lockout_service",
    "get_csrf_token_service",
    "get_oauth_service",
]
