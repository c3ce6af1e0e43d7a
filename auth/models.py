"""
auth/models.py -- The authenticated caller of a management request.

Pattern: Data class (pure data container, zero logic). Mirrors the approach
in core/models.py -- dataclasses own domain shape; routes do the work.

Layer rule: no imports from api/, rpc/, core/, idp/, pat/, or cache/.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class Caller:
    """A human user as asserted by the edge proxy.

    user_id is the IdP subject and is the only required field. email and
    preferred_username are optional and only used to label a newly created
    machine user.
    """

    user_id: str
    email: str = ""
    preferred_username: str = ""
