"""
Unified database infrastructure module.

Routes and jobs import the SQLAlchemy instance from here.
"""

from parkpay.database import db

__all__ = ["db"]
