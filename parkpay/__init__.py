# -*- coding: utf-8 -*-
"""parkpay - payment and subscription synchronization service."""

__version__ = "1.0.0"
