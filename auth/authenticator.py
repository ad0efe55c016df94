from __future__ import annotations

import hmac
import time
from typing import Callable

import httpx

from auth import msa_oauth2, xbox_live
from auth.errors import CsrfMismatch
from auth.models import MinecraftProfile, MsaTokens, PendingAuthorization, TokenWithExpiry, XstsToken
from sakura.env import Settings


class Authenticator:
    """The sign-in exchanges bound to one launcher configuration.

    When no ``client`` is given each call opens and closes its own
    ``httpx.AsyncClient``; a shared client stays owned by the caller.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        client: httpx.AsyncClient | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.settings = settings
        self._client = client
        self._clock = clock

    def create_authorization(self) -> PendingAuthorization:
        return msa_oauth2.create_authorization(
            client_id=self.settings.client_id,
            redirect_uri=self.settings.redirect_uri,
            scopes=self.settings.scopes,
            authorize_url=self.settings.authorize_url,
        )

    async def finish_authorization(
        self,
        authorization_code: str,
        state_from_redirect: str | None,
        expected_state: str,
        code_verifier: str,
    ) -> MsaTokens:
        if state_from_redirect is None or not hmac.compare_digest(
            state_from_redirect.encode(), expected_state.encode()
        ):
            raise CsrfMismatch(expected_state, state_from_redirect)

        return await msa_oauth2.exchange_code(
            client_id=self.settings.client_id,
            code=authorization_code,
            redirect_uri=self.settings.redirect_uri,
            code_verifier=code_verifier,
            token_url=self.settings.token_url,
            client=self._client,
            clock=self._clock,
        )

    async def refresh_msa(self, refresh_token: str) -> MsaTokens:
        return await msa_oauth2.refresh_token(
            client_id=self.settings.client_id,
            refresh_token=refresh_token,
            redirect_uri=self.settings.redirect_uri,
            scopes=self.settings.scopes,
            token_url=self.settings.token_url,
            client=self._client,
            clock=self._clock,
        )

    async def authenticate_xbox(self, msa_access_token: str) -> TokenWithExpiry:
        return await xbox_live.authenticate_xbox(
            msa_access_token, url=self.settings.xbl_url, client=self._client
        )

    async def obtain_xsts(self, xbl_token: str) -> XstsToken:
        return await xbox_live.obtain_xsts(xbl_token, url=self.settings.xsts_url, client=self._client)

    async def authenticate_minecraft(self, xsts_token: XstsToken) -> TokenWithExpiry:
        return await xbox_live.authenticate_minecraft(
            xsts_token, url=self.settings.login_url, client=self._client, clock=self._clock
        )

    async def get_minecraft_profile(self, access_token: str) -> MinecraftProfile:
        return await xbox_live.get_minecraft_profile(
            access_token, url=self.settings.profile_url, client=self._client
        )
