"""
Infrastructure package - unified entry points for core services.

This package provides standardized, centralized access to:
- Database (db)
- Authentication (require_user)
- Logging (configure_logging, init_logging, get_logger)
"""

from parkpay.infra.db import db
from parkpay.infra.auth import require_user
from parkpay.infra.log import configure_logging, init_logging, get_logger

__all__ = [
    "db",
    "require_user",
    "configure_logging",
    "init_logging",
    "get_logger",
]
