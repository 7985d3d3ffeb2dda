"""State management helpers for localstacker."""
from __future__ import annotations

from .registry import RegistryCorruptError, StateRegistry, StateRegistryError

__all__ = ["RegistryCorruptError", "StateRegistry", "StateRegistryError"]
