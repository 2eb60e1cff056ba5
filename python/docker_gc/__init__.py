"""Generational garbage collection for stopped containers and unused images."""

__version__ = "0.1.0"
