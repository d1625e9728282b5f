"""Credential broker — OIDC workload-identity federation for cluster access.

The pipeline's own identity provider issues a short-lived token scoped to
the cluster's federation audience. The cluster trusts that issuer/audience
pair directly, so the token is used as the bearer credential with no
further exchange. No static secret is stored anywhere.

A refused audience or unreachable provider is a configuration fault and
is never retried.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
from datetime import datetime, timezone
from typing import Protocol, runtime_checkable

import httpx

from tagdeploy.errors import CredentialError
from tagdeploy.models.release import FederatedCredential

logger = logging.getLogger(__name__)


@runtime_checkable
class IdentityProvider(Protocol):
    """Anything that can issue an identity token for an audience."""

    def request_token(self, audience: str) -> str:
        ...


class ActionsIdentityProvider:
    """GitHub Actions OIDC token endpoint client.

    Parameters
    ----------
    request_url:
        ``ACTIONS_ID_TOKEN_REQUEST_URL`` of the running job.
    request_token:
        ``ACTIONS_ID_TOKEN_REQUEST_TOKEN`` of the running job.
    transport:
        Optional httpx transport, e.g. ``httpx.MockTransport`` in tests.
    """

    def __init__(
        self,
        request_url: str | None,
        request_token: str | None,
        *,
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._request_url = request_url
        self._request_token = request_token
        self._timeout = timeout
        self._transport = transport

    def request_token(self, audience: str) -> str:
        if not self._request_url or not self._request_token:
            raise CredentialError(
                "No identity token endpoint available; the job needs "
                "the 'id-token: write' permission"
            )

        try:
            with httpx.Client(timeout=self._timeout, transport=self._transport) as client:
                response = client.get(
                    self._request_url,
                    params={"audience": audience},
                    headers={
                        "Authorization": f"Bearer {self._request_token}",
                        "Accept": "application/json",
                    },
                )
        except httpx.HTTPError as exc:
            raise CredentialError(f"Identity provider unreachable: {exc}") from exc

        if response.is_error:
            raise CredentialError(
                f"Identity provider refused audience {audience!r}: "
                f"HTTP {response.status_code}"
            )

        try:
            token = response.json().get("value")
        except (ValueError, AttributeError) as exc:
            raise CredentialError("Identity provider returned a non-JSON body") from exc
        if not token:
            raise CredentialError("Identity provider returned no token")
        return str(token)


class CredentialBroker:
    """Mints one fresh ``FederatedCredential`` per call. Nothing is cached."""

    def __init__(self, provider: IdentityProvider) -> None:
        self._provider = provider

    def mint(self, audience: str) -> FederatedCredential:
        """Request a token for *audience* and wrap it as a credential."""
        if not audience:
            raise CredentialError("Audience must not be empty")

        logger.info("Requesting identity token for audience %s", audience)
        token = self._provider.request_token(audience)
        credential = FederatedCredential(
            audience=audience,
            raw_token=token,
            expires_at=_token_expiry(token),
        )
        logger.info(
            "Minted credential for %s (expires %s)",
            audience,
            credential.expires_at.isoformat() if credential.expires_at else "unknown",
        )
        return credential


def _token_expiry(token: str) -> datetime | None:
    """Read the ``exp`` claim without verifying the token. Returns None if absent."""
    parts = token.split(".")
    if len(parts) != 3:
        return None
    payload = parts[1] + "=" * (-len(parts[1]) % 4)
    try:
        claims = json.loads(base64.urlsafe_b64decode(payload))
    except (binascii.Error, ValueError):
        return None
    exp = claims.get("exp") if isinstance(claims, dict) else None
    if not isinstance(exp, (int, float)):
        return None
    return datetime.fromtimestamp(exp, tz=timezone.utc)
