from __future__ import annotations


class ExerciseConfigError(ValueError):
    """Unknown exercise or malformed threshold table.

    Raised when a tracking session is created, never while frames are flowing.
    """
