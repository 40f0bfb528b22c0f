"""Domain models for the user accounts store."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass
class User:
    """A user account row.

    ``id``, ``created_at`` and ``updated_at`` are filled in by the store.
    ``password_hash`` is only written; reads never project it back.
    """

    email: str = ""
    password_hash: str = ""
    first_name: str = ""
    middle_name: str = ""
    last_name: str = ""
    profile_image_url: str = ""
    sign_in: bool = False
    is_blocked: bool = False
    id: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


__all__ = ["User"]
