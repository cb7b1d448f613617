"""CLI package exports for top-level command entry points."""

from __future__ import annotations

from .main import VBoxLabModalCLI, main

__all__ = ['VBoxLabModalCLI', 'main']
