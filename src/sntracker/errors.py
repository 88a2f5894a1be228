from __future__ import annotations


class SetupError(ValueError):
    """Invalid algorithm setup (e.g. undefined or non-positive cell size)."""


class InputError(ValueError):
    """Input hit collection violates the algorithm contract; the whole batch is rejected."""
