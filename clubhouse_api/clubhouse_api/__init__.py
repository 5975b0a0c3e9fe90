"""Clubhouse API: tenant onboarding, admission and billing sync."""

__version__ = "0.1.0"
