"""
Dependency Governance Tool

Checks a project's third-party dependencies against forbidden-license and
cooling (minimum age and adoption) policy.
"""

__version__ = "0.1.0"

from .cli import main

__all__ = ["main"]
