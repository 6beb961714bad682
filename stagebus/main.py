#!/usr/bin/env python3
"""
stagebus: pipeline stage result bus.

This module is a thin shim that exposes the CLI app from stagebus.cli.

Usage:
    stagebus run [OPTIONS] [PIPELINE_FILE]
    stagebus runs list
    stagebus runs show RUN_ID
"""

from .cli import app, bootstrap

bootstrap()

if __name__ == "__main__":
    app()
