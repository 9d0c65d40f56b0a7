"""
Pulsecheck CLI

Command-line interface for inspecting plugins and running ad-hoc checks.
"""

from pulsecheck.cli.main import app

__all__ = ["app"]
