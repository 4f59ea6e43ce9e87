"""
Utility modules for the EV service booking backend.

This package contains shared helpers used across the application, currently
the service center datetime utilities.
"""

from utils.datetime_utils import center_now, ensure_center, to_center_naive

__all__ = ['center_now', 'ensure_center', 'to_center_naive']
