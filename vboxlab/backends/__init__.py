"""Concrete hypervisor service implementations."""

from __future__ import annotations

from .vboxmanage import VBoxManageService

__all__ = ['VBoxManageService']
