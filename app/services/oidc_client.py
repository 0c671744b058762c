"""Identity provider client: authorization redirect and token exchange.

Two calls against the provider, both driven by ProviderSettings:

  build_authorization_url()  pure URL construction, no I/O
  TokenExchangeClient        one form-encoded POST per callback, no retry

Authorization codes are single-use.  A retried exchange would either fail
again or trip the provider's replay detection, so every failure here is
final and surfaces as TokenExchangeFailed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from urllib.parse import urlencode

import httpx

from app.core.config import ProviderSettings
from app.core.errors import TokenExchangeFailed
from app.services.pkce_service import CODE_CHALLENGE_METHOD

logger = logging.getLogger(__name__)

SCOPES = ("openid", "profile", "email")


def build_authorization_url(
    provider: ProviderSettings, *, csrf_state: str, code_challenge: str
) -> str:
    params = {
        "client_id": provider.client_id,
        "response_type": "code",
        "redirect_uri": provider.redirect_uri,
        "scope": " ".join(SCOPES),
        "state": csrf_state,
        "code_challenge": code_challenge,
        "code_challenge_method": CODE_CHALLENGE_METHOD,
    }
    return f"{provider.authorization_endpoint}?{urlencode(params)}"


@dataclass(frozen=True, slots=True)
class TokenSet:
    id_token: str
    access_token: str
    refresh_token: str | None = None

    def __repr__(self) -> str:
        # Keep token material out of tracebacks and debug logs.
        return f"TokenSet(refresh_token={'set' if self.refresh_token else 'unset'})"


class TokenExchangeClient:
    """Exchanges an authorization code plus PKCE verifier for tokens.

    ``http_client`` is injectable so tests can mount an httpx.MockTransport;
    when omitted a short-lived AsyncClient is opened per exchange.
    """

    def __init__(
        self,
        provider: ProviderSettings,
        *,
        timeout: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._provider = provider
        self._timeout = timeout
        self._http_client = http_client

    async def exchange(self, code: str, code_verifier: str) -> TokenSet:
        form = {
            "client_id": self._provider.client_id,
            "client_secret": self._provider.client_secret,
            "code": code,
            "code_verifier": code_verifier,
            "grant_type": "authorization_code",
            "redirect_uri": self._provider.redirect_uri,
        }
        # NOTE: never log ``form``; it carries the client secret, code and verifier.
        try:
            if self._http_client is not None:
                response = await self._post(self._http_client, form)
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await self._post(client, form)
        except httpx.HTTPError as e:
            logger.warning("Token endpoint unreachable: %s", type(e).__name__)
            raise TokenExchangeFailed("token endpoint unreachable") from None

        if response.status_code != 200:
            logger.warning(
                "Token endpoint rejected exchange  status=%d error=%s",
                response.status_code,
                _provider_error_code(response),
            )
            raise TokenExchangeFailed(f"token endpoint returned {response.status_code}")

        try:
            body = response.json()
        except ValueError:
            logger.warning("Token endpoint returned a non-JSON body")
            raise TokenExchangeFailed("malformed token response") from None

        if not isinstance(body, dict):
            raise TokenExchangeFailed("malformed token response")

        id_token = body.get("id_token")
        access_token = body.get("access_token")
        if not isinstance(id_token, str) or not id_token:
            logger.warning("Token response has no id_token")
            raise TokenExchangeFailed("token response missing id_token")
        if not isinstance(access_token, str) or not access_token:
            logger.warning("Token response has no access_token")
            raise TokenExchangeFailed("token response missing access_token")

        refresh_token = body.get("refresh_token")
        return TokenSet(
            id_token=id_token,
            access_token=access_token,
            refresh_token=refresh_token if isinstance(refresh_token, str) else None,
        )

    async def _post(self, client: httpx.AsyncClient, form: dict[str, str]) -> httpx.Response:
        return await client.post(
            self._provider.token_endpoint,
            data=form,
            headers={"Accept": "application/json"},
            timeout=self._timeout,
        )


def _provider_error_code(response: httpx.Response) -> str:
    """The OAuth ``error`` code from an error body, e.g. ``invalid_grant``.

    Only the standardized code is returned; ``error_description`` can echo
    request parameters and is not logged.
    """
    try:
        body = response.json()
    except ValueError:
        return "-"
    if isinstance(body, dict) and isinstance(body.get("error"), str):
        return body["error"][:64]
    return "-"
