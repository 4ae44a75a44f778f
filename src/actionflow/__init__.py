"""Provide the public `actionflow` package exports."""

from __future__ import annotations

from .outline.engine import OutlineEngine

__all__ = ["OutlineEngine"]
