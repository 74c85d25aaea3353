"""
Loopdeck Utilities Module

Utility functions and helpers:
- setup_logger: Console and log-file output for the desktop host
"""
from .logger import setup_logger

__all__ = ['setup_logger']
