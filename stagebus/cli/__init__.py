"""Command-line interface for stagebus."""

from .cli import app, bootstrap

__all__ = ["app", "bootstrap"]
