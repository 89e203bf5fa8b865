"""Lockstep - deterministic dependency resolution and lockfile management."""

__version__ = "0.1.0"
