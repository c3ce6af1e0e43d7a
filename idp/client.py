"""
idp/client.py -- HTTP client for the identity provider (Zitadel-style API).

One IdentityClient per process. It owns a single requests.Session so every
request thread shares the same connection pool. The session mounts an
HTTPAdapter with a small retry budget: connection errors are retried for any
method, 502/503/504 only for GET (userinfo). Token exchanges and management
POSTs are never replayed after the IdP has seen them.

Endpoints:
  POST   {issuer}/oauth/v2/token               token exchange (client Basic auth)
  GET    {issuer}/oidc/v1/userinfo             userinfo (caller bearer)
  POST   {issuer}/v2/users                     machine user search
  POST   {issuer}/v2/users/new                 machine user create
  POST   {issuer}/v2/users/{id}/pats           add PAT
  POST   {issuer}/v2/users/pats/search         list PATs
  DELETE {issuer}/v2/users/{id}/pats/{pat_id}  remove PAT

Management calls authenticate with the admin PAT as a bearer token.

Failure policy: any non-2xx answer raises IdPError carrying the operation, the
status code and a bounded copy of the response body. Transport errors raise
IdPError with status_code=None. Nothing here swallows a failure; callers
decide whether it becomes a denial or a typed management error.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Any

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from idp.models import MachineUser, PersonalAccessToken, TokenResult, UserInfo

logger = logging.getLogger("tokengate.idp")

GRANT_TYPE_TOKEN_EXCHANGE = "urn:ietf:params:oauth:grant-type:token-exchange"
TOKEN_TYPE_ACCESS_TOKEN = "urn:ietf:params:oauth:token-type:access_token"
TOKEN_TYPE_JWT = "urn:ietf:params:oauth:token-type:jwt"
TOKEN_TYPE_USER_ID = "urn:zitadel:params:oauth:token-type:user_id"

# Upper bound on how much of an IdP error body is kept in exceptions and logs.
MAX_ERROR_BODY = 512

_PAT_LIST_LIMIT = 100
_RFC3339_RE = re.compile(r"^(\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2})(?:\.(\d+))?(Z|[+-]\d{2}:\d{2})?$")


class IdPError(RuntimeError):
    """An IdP call failed, either at the transport or with a non-2xx status."""

    def __init__(self, operation: str, status_code: int | None = None, body: str = "") -> None:
        self.operation = operation
        self.status_code = status_code
        self.body = _truncate(body)
        if status_code is None:
            message = f"{operation} failed: {self.body}"
        else:
            message = f"{operation} failed with status {status_code}: {self.body}"
        super().__init__(message)


class IdPNotFoundError(IdPError):
    """The IdP answered 404 for a resource this call addressed directly."""


class MachineUserConflictError(IdPError):
    """Create answered 409 and the existing machine user could not be fetched."""


def _truncate(body: str) -> str:
    if len(body) <= MAX_ERROR_BODY:
        return body
    return body[:MAX_ERROR_BODY] + "...(truncated)"


def format_rfc3339(value: datetime) -> str:
    """Render a datetime as a UTC RFC3339 timestamp with second precision."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def parse_rfc3339(value: str | None) -> datetime | None:
    """Parse an IdP timestamp. Nanosecond fractions are cut to microseconds.

    Returns None for empty or unparseable input.
    """
    if not value:
        return None
    match = _RFC3339_RE.match(value.strip())
    if match is None:
        return None
    base, fraction, offset = match.groups()
    text = base
    if fraction:
        text += "." + fraction[:6].ljust(6, "0")
    if not offset or offset == "Z":
        offset = "+00:00"
    try:
        return datetime.fromisoformat(text + offset)
    except ValueError:
        return None


def build_session(retries: int) -> requests.Session:
    """Return a pooled Session with a bounded retry policy mounted."""
    retry = Retry(
        total=retries,
        connect=retries,
        read=0,
        status=retries,
        status_forcelist=(502, 503, 504),
        allowed_methods=frozenset({"GET"}),
        backoff_factor=0.2,
        raise_on_status=False,
    )
    adapter = HTTPAdapter(max_retries=retry)
    session = requests.Session()
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    # The IdP never redirects API calls; a redirect here is a misconfiguration.
    session.max_redirects = 3
    return session


class IdentityClient:
    """Client for token exchange, userinfo and machine-user/PAT management.

    Args:
        issuer:          IdP base URL, e.g. "https://auth.example.com".
        client_id:       OAuth client id; also sent as the exchange audience.
        client_secret:   OAuth client secret for HTTP Basic client auth.
        admin_token:     Bearer credential for the management API.
        organization_id: Organization that owns created machine users.
        timeout:         Default per-call timeout in seconds.
        session:         Optional pre-built Session (tests inject a mock).
    """

    def __init__(
        self,
        issuer: str,
        client_id: str,
        client_secret: str,
        admin_token: str = "",
        organization_id: str = "",
        timeout: float = 10.0,
        retries: int = 2,
        session: requests.Session | None = None,
    ) -> None:
        self._issuer = issuer.rstrip("/")
        self._client_id = client_id
        self._client_secret = client_secret
        self._admin_token = admin_token
        self._organization_id = organization_id
        self._timeout = timeout
        self._session = session if session is not None else build_session(retries)

    @property
    def timeout(self) -> float:
        return self._timeout

    def close(self) -> None:
        self._session.close()

    # ------------------------------------------------------------------
    # Token exchange and userinfo
    # ------------------------------------------------------------------

    def exchange(self, subject_token: str, timeout: float | None = None) -> TokenResult:
        """Subject-only exchange of the caller's credential for an access token."""
        form = {
            "grant_type": GRANT_TYPE_TOKEN_EXCHANGE,
            "subject_token": subject_token,
            "subject_token_type": TOKEN_TYPE_ACCESS_TOKEN,
            "requested_token_type": TOKEN_TYPE_ACCESS_TOKEN,
            "scope": "openid",
            "audience": self._client_id,
        }
        return self._token_request("token exchange", form, timeout)

    def exchange_with_actor(
        self,
        subject_token: str,
        subject_token_type: str,
        actor_token: str,
        timeout: float | None = None,
    ) -> TokenResult:
        """Delegated exchange: the actor (admin PAT) acts on behalf of the subject.

        With subject_token_type=TOKEN_TYPE_USER_ID the subject is a bare user
        id, which is how a machine user's PAT is turned into an id_token for
        the machine user.
        """
        form = {
            "grant_type": GRANT_TYPE_TOKEN_EXCHANGE,
            "subject_token": subject_token,
            "subject_token_type": subject_token_type,
            "actor_token": actor_token,
            "actor_token_type": TOKEN_TYPE_ACCESS_TOKEN,
            "requested_token_type": TOKEN_TYPE_JWT,
            "scope": "openid",
            "audience": self._client_id,
        }
        return self._token_request("token exchange", form, timeout)

    def get_user_info(self, token: str, timeout: float | None = None) -> UserInfo:
        """Resolve the caller's credential to its OIDC userinfo."""
        resp = self._send(
            "userinfo request",
            "GET",
            "/oidc/v1/userinfo",
            headers={"Authorization": f"Bearer {token}"},
            timeout=timeout,
        )
        data = self._json(resp, "userinfo request")
        return UserInfo(
            sub=_str(data.get("sub")),
            username=_str(data.get("preferred_username")),
            email=_str(data.get("email")),
            name=_str(data.get("name")),
        )

    # ------------------------------------------------------------------
    # Machine users
    # ------------------------------------------------------------------

    def get_machine_user(self, username: str) -> MachineUser | None:
        """Find the machine user whose username is exactly `username`.

        Returns None on 404 or an empty result set.
        """
        body = {
            "query": {"limit": 1},
            "queries": [
                {"userNameQuery": {"userName": username, "method": "TEXT_QUERY_METHOD_EQUALS"}},
                {"typeQuery": {"type": "TYPE_MACHINE"}},
                {"organizationIdQuery": {"organizationId": self._organization_id}},
            ],
        }
        try:
            resp = self._send("get user", "POST", "/v2/users", json=body, admin=True)
        except IdPNotFoundError:
            return None

        result = self._json(resp, "get user").get("result") or []
        if not result:
            return None

        user = result[0]
        user_id = _str(user.get("userId"))
        if not user_id:
            raise IdPError("get user", body="user id is empty in response")
        machine = user.get("machine")
        if not isinstance(machine, dict):
            raise IdPError("get user", body="user is not a machine user")

        return MachineUser(
            id=user_id,
            username=_str(user.get("username")),
            name=_str(machine.get("name")),
            description=_str(machine.get("description")),
        )

    def create_machine_user(self, username: str, name: str, description: str) -> MachineUser:
        """Create a machine user; on 409 return the one that already exists."""
        body = {
            "organizationId": self._organization_id,
            "username": username,
            "machine": {"name": name, "description": description},
        }
        try:
            resp = self._send("create machine user", "POST", "/v2/users/new", json=body, admin=True)
        except IdPError as e:
            if e.status_code != 409:
                raise
            logger.info("Machine user %s already exists, fetching it", username)
            existing = self.get_machine_user(username)
            if existing is None:
                raise MachineUserConflictError(
                    "create machine user", 409, "user exists but could not be retrieved"
                ) from e
            return existing

        user_id = _str(self._json(resp, "create machine user").get("id"))
        if not user_id:
            raise IdPError("create machine user", body="user id is empty in response")
        return MachineUser(id=user_id, username=username, name=name, description=description)

    # ------------------------------------------------------------------
    # Personal access tokens
    # ------------------------------------------------------------------

    def add_personal_access_token(
        self, user_id: str, expiration: datetime
    ) -> tuple[PersonalAccessToken, str]:
        """Create a PAT for a machine user. Returns (metadata, raw token).

        The raw token is only ever available in this response.
        """
        body = {"userId": user_id, "expirationDate": format_rfc3339(expiration)}
        resp = self._send("add personal access token", "POST", f"/v2/users/{user_id}/pats", json=body, admin=True)
        data = self._json(resp, "add personal access token")

        pat = PersonalAccessToken(
            id=_str(data.get("tokenId")),
            user_id=user_id,
            expiration_date=expiration,
            created_at=parse_rfc3339(data.get("creationDate")) or datetime.now(timezone.utc),
        )
        return pat, _str(data.get("token"))

    def list_personal_access_tokens(self, user_id: str) -> list[PersonalAccessToken]:
        body = {
            "pagination": {"limit": _PAT_LIST_LIMIT},
            "filters": [{"userIdFilter": {"id": user_id}}],
        }
        resp = self._send("list personal access tokens", "POST", "/v2/users/pats/search", json=body, admin=True)
        result = self._json(resp, "list personal access tokens").get("result") or []

        return [
            PersonalAccessToken(
                id=_str(item.get("id")),
                user_id=_str(item.get("userId")) or user_id,
                expiration_date=parse_rfc3339(item.get("expirationDate")),
                created_at=parse_rfc3339(item.get("creationDate")),
            )
            for item in result
            if isinstance(item, dict)
        ]

    def remove_personal_access_token(self, user_id: str, pat_id: str) -> None:
        """Delete a PAT. Raises IdPNotFoundError when the IdP answers 404."""
        self._send(
            "remove personal access token",
            "DELETE",
            f"/v2/users/{user_id}/pats/{pat_id}",
            admin=True,
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _token_request(self, operation: str, form: dict[str, str], timeout: float | None) -> TokenResult:
        resp = self._send(
            operation,
            "POST",
            "/oauth/v2/token",
            data=form,
            auth=(self._client_id, self._client_secret),
            timeout=timeout,
        )
        data = self._json(resp, operation)
        try:
            expires_in = int(data.get("expires_in") or 0)
        except (TypeError, ValueError):
            expires_in = 0
        return TokenResult(
            access_token=_str(data.get("access_token")),
            token_type=_str(data.get("token_type")),
            issued_token_type=_str(data.get("issued_token_type")),
            refresh_token=_str(data.get("refresh_token")),
            id_token=_str(data.get("id_token")),
            expires_in=expires_in,
            scope=_str(data.get("scope")),
        )

    def _send(
        self,
        operation: str,
        method: str,
        path: str,
        *,
        admin: bool = False,
        headers: dict[str, str] | None = None,
        timeout: float | None = None,
        **kwargs: Any,
    ) -> requests.Response:
        request_headers = {"Accept": "application/json"}
        if admin:
            request_headers["Authorization"] = f"Bearer {self._admin_token}"
        if headers:
            request_headers.update(headers)

        try:
            resp = self._session.request(
                method,
                f"{self._issuer}{path}",
                headers=request_headers,
                timeout=timeout if timeout is not None else self._timeout,
                **kwargs,
            )
        except requests.RequestException as e:
            logger.error("IdP %s failed: %s", operation, e)
            raise IdPError(operation, body=str(e)) from e

        if resp.status_code == 404:
            raise IdPNotFoundError(operation, 404, resp.text)
        if not 200 <= resp.status_code < 300:
            error = IdPError(operation, resp.status_code, resp.text)
            logger.error("IdP %s", error)
            raise error
        return resp

    @staticmethod
    def _json(resp: requests.Response, operation: str) -> dict[str, Any]:
        try:
            data = resp.json()
        except ValueError as e:
            raise IdPError(operation, resp.status_code, f"invalid JSON response: {e}") from e
        if not isinstance(data, dict):
            raise IdPError(operation, resp.status_code, "response is not a JSON object")
        return data


def _str(value: Any) -> str:
    return value if isinstance(value, str) else ""
