"""Identifier generation for monitors that are not named by their caller."""

from __future__ import annotations

from uuid import uuid4


def new_id() -> str:
    """Generate a new random UUID v4 string."""
    return str(uuid4())
