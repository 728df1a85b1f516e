"""Middleware code generation for JavaScript web frameworks."""

from ..amounts import to_units
from .generator import Framework, generate, resolve_framework

__all__ = ["Framework", "generate", "resolve_framework", "to_units"]
