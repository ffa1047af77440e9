#!/usr/bin/env python3
"""
CLI entry point for vodcast.cli module.

This allows running: python -m vodcast.cli
"""

from .main import cli

if __name__ == "__main__":
    cli()
