"""
pat/service.py -- PAT lifecycle on top of the IdP management API.

create_pat:  validate expiration -> get-or-create machine user -> add PAT
list_pats:   find machine user (none -> []) -> list PATs
delete_pat:  find machine user (none -> MachineUserNotFoundError) -> remove PAT

Errors are typed and propagated. The route layer maps PATError.code to an
HTTP status; nothing here knows about HTTP.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from idp.client import IdentityClient, IdPError, IdPNotFoundError, MachineUserConflictError
from idp.models import MachineUser, PersonalAccessToken
from pat.models import PAT

logger = logging.getLogger("tokengate.pat")


class PATError(Exception):
    """Base class for PAT lifecycle failures."""

    code = "internal"


class InvalidExpirationError(PATError):
    code = "invalid_argument"


class MachineUserNotFoundError(PATError):
    code = "machine_user_not_found"


class PATNotFoundError(PATError):
    code = "pat_not_found"


class PATConflictError(PATError):
    code = "already_exists"


class PATInternalError(PATError):
    code = "internal"


class PATManager:
    """Creates, lists and deletes PATs for human users via their machine user."""

    def __init__(self, idp: IdentityClient) -> None:
        self._idp = idp

    def create_pat(
        self,
        human_user_id: str,
        email: str,
        preferred_username: str,
        expiration: datetime,
    ) -> tuple[PAT, str]:
        """Create a PAT owned by the caller's machine user.

        Returns (metadata, raw token). The raw token is shown once and never
        stored here.

        Raises:
            InvalidExpirationError: expiration is not in the future. Checked
                before any IdP call.
            PATConflictError: the machine user exists but cannot be fetched.
            PATInternalError: any other IdP failure.
        """
        if expiration.tzinfo is None:
            expiration = expiration.replace(tzinfo=timezone.utc)
        if expiration <= datetime.now(timezone.utc):
            raise InvalidExpirationError("expiration date must be in the future")

        try:
            machine_user = self._get_or_create_machine_user(human_user_id, email, preferred_username)
            token, raw = self._idp.add_personal_access_token(machine_user.id, expiration)
        except MachineUserConflictError as e:
            raise PATConflictError(str(e)) from e
        except IdPError as e:
            raise PATInternalError(f"failed to create PAT: {e}") from e

        logger.info("Created PAT %s for user %s", token.id, human_user_id)
        return _to_pat(token, human_user_id), raw

    def list_pats(self, human_user_id: str) -> list[PAT]:
        """List the caller's PATs. A caller without a machine user has none."""
        try:
            machine_user = self._idp.get_machine_user(human_user_id)
            if machine_user is None:
                return []
            tokens = self._idp.list_personal_access_tokens(machine_user.id)
        except IdPError as e:
            raise PATInternalError(f"failed to list PATs: {e}") from e

        return [_to_pat(token, human_user_id) for token in tokens]

    def delete_pat(self, human_user_id: str, pat_id: str) -> None:
        """Delete one of the caller's PATs.

        Raises:
            MachineUserNotFoundError: the caller never created a PAT.
            PATNotFoundError: the IdP has no such PAT for the machine user.
            PATInternalError: any other IdP failure.
        """
        try:
            machine_user = self._idp.get_machine_user(human_user_id)
        except IdPError as e:
            raise PATInternalError(f"failed to get machine user: {e}") from e
        if machine_user is None:
            raise MachineUserNotFoundError("machine user not found")

        try:
            self._idp.remove_personal_access_token(machine_user.id, pat_id)
        except IdPNotFoundError as e:
            raise PATNotFoundError("PAT not found") from e
        except IdPError as e:
            raise PATInternalError(f"failed to delete PAT: {e}") from e

        logger.info("Deleted PAT %s for user %s", pat_id, human_user_id)

    def _get_or_create_machine_user(
        self, human_user_id: str, email: str, preferred_username: str
    ) -> MachineUser:
        existing = self._idp.get_machine_user(human_user_id)
        if existing is not None:
            return existing

        logger.info("Creating machine user for %s", human_user_id)
        return self._idp.create_machine_user(
            username=human_user_id,
            name=preferred_username or human_user_id,
            description=email,
        )


def _to_pat(token: PersonalAccessToken, human_user_id: str) -> PAT:
    return PAT(
        id=token.id,
        machine_user_id=token.user_id,
        human_user_id=human_user_id,
        expiration_date=token.expiration_date,
        created_at=token.created_at,
    )
