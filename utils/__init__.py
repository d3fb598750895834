# utils/__init__.py
"""Shared helpers for the film-package engine."""

from .logging import setup_logging

__all__ = ["setup_logging"]
