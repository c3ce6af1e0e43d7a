"""
pat/models.py -- Management view of a personal access token.

Pattern: Data class. The IdP stores PATs against machine users; callers only
know their own (human) user id, so this view carries both.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass
class PAT:
    id: str
    machine_user_id: str
    human_user_id: str
    expiration_date: datetime | None = None
    created_at: datetime | None = None
