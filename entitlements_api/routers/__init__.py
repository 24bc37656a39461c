"""API routers."""

from . import admin
from . import health
from . import paypal
from . import subscription

__all__ = ['admin', 'health', 'paypal', 'subscription']
