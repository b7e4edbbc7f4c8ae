"""
Unified authentication infrastructure module.

Routes import their auth decorators from here.
"""

from parkpay.services.security import require_user

__all__ = ["require_user"]
