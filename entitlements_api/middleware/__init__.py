"""API middleware for rate limiting and admin brute force protection."""

from .rate_limit import setup_rate_limiting
from .brute_force import setup_brute_force_protection

__all__ = [
    'setup_rate_limiting',
    'setup_brute_force_protection',
]
