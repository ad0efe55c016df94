"""Login state machine driving the sign-in chain.

A view subscribes to ``LoginFlow.events`` instead of polling mutable flags.
``login`` loads whatever the store holds, works out the most advanced stage
that is still valid and runs only the exchanges after it, one at a time.
Nothing reaches the store unless the whole chain succeeds.
"""

from __future__ import annotations

import asyncio
import time
import webbrowser
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, Union

from auth.authenticator import Authenticator
from auth.credentials import AccountCredentials, CredentialStage
from auth.errors import AuthError, AuthorizationDenied, ErrorKind, MissingField, describe_failure
from auth.models import MinecraftProfile
from auth.redirect_server import RedirectListener
from auth.token_store import CredentialStore
from sakura.constants import LOGGER, REDIRECT_TIMEOUT_SECONDS


class LoginState(str, Enum):
    IDLE = "idle"
    IN_PROGRESS = "in_progress"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True)
class LoginStarted:
    pass


@dataclass(frozen=True)
class LoginSucceeded:
    profile: MinecraftProfile


@dataclass(frozen=True)
class LoginFailed:
    kind: ErrorKind
    message: str


LoginEvent = Union[LoginStarted, LoginSucceeded, LoginFailed]

# Oldest events are dropped once a host stops draining the queue.
EVENT_BUFFER_SIZE = 32


class LoginFlow:
    def __init__(
        self,
        authenticator: Authenticator,
        listener: RedirectListener,
        store: CredentialStore,
        *,
        open_browser: Callable[[str], bool] = webbrowser.open,
        redirect_timeout: float = REDIRECT_TIMEOUT_SECONDS,
        clock: Callable[[], float] = time.time,
        event_buffer: int = EVENT_BUFFER_SIZE,
    ) -> None:
        self.authenticator = authenticator
        self.listener = listener
        self.store = store
        self.events: asyncio.Queue[LoginEvent] = asyncio.Queue(maxsize=event_buffer)
        self.state = LoginState.IDLE
        self._open_browser = open_browser
        self._redirect_timeout = redirect_timeout
        self._clock = clock

    async def login(self, *, interactive: bool = False) -> AccountCredentials:
        if self.state is LoginState.IN_PROGRESS:
            raise RuntimeError("A login attempt is already in progress.")

        self._transition(LoginState.IN_PROGRESS, LoginStarted())
        try:
            stored = None if interactive else await self.store.load()
            credentials = await self._advance(stored or AccountCredentials())
            await self.store.save(credentials)
        except Exception as error:
            kind = error.kind if isinstance(error, AuthError) else ErrorKind.UNEXPECTED
            LOGGER.warning("Login failed kind=%s: %s", kind.value, error)
            self._transition(LoginState.FAILED, LoginFailed(kind, describe_failure(error)))
            raise
        except BaseException:
            self.state = LoginState.IDLE
            raise

        self._transition(LoginState.SUCCEEDED, LoginSucceeded(credentials.minecraft_profile))
        LOGGER.info("Logged in as %s", credentials.minecraft_profile.name)
        return credentials

    async def sign_out(self) -> None:
        await self.store.clear()
        self.state = LoginState.IDLE

    async def _advance(self, credentials: AccountCredentials) -> AccountCredentials:
        stage = credentials.stage(self._clock())
        LOGGER.info("Resuming sign-in from stage %s", stage.name)

        if stage is CredentialStage.NONE:
            credentials = await self._authorize_interactively()
        elif stage is CredentialStage.MSA_REFRESH:
            tokens = await self.authenticator.refresh_msa(credentials.msa_refresh)
            credentials = credentials.with_msa_tokens(tokens)

        if stage < CredentialStage.XBOX_LIVE:
            xbl_token = await self.authenticator.authenticate_xbox(credentials.msa_access.token)
            credentials = replace(credentials, xbl_token=xbl_token)

        if stage < CredentialStage.XSTS:
            xsts_token = await self.authenticator.obtain_xsts(credentials.xbl_token.token)
            credentials = replace(credentials, xsts_token=xsts_token)

        if stage < CredentialStage.MINECRAFT_ACCESS:
            access = await self.authenticator.authenticate_minecraft(credentials.xsts_token)
            credentials = replace(credentials, minecraft_access=access)

        profile = await self.authenticator.get_minecraft_profile(credentials.minecraft_access.token)
        return replace(credentials, minecraft_profile=profile)

    async def _authorize_interactively(self) -> AccountCredentials:
        pending = self.authenticator.create_authorization()

        async with self.listener.listen(pending.state) as redirect:
            if not self._open_browser(pending.authorization_url):
                LOGGER.warning(
                    "Could not open a browser; visit this URL to sign in: %s",
                    pending.authorization_url,
                )
            result = await redirect.wait(self._redirect_timeout)

        if result.error:
            raise AuthorizationDenied(result.error, result.error_description)
        if not result.code:
            raise MissingField("code")

        tokens = await self.authenticator.finish_authorization(
            result.code,
            result.state,
            pending.state,
            pending.code_verifier,
        )
        return AccountCredentials().with_msa_tokens(tokens)

    def _transition(self, state: LoginState, event: LoginEvent) -> None:
        self.state = state
        if self.events.full():
            self.events.get_nowait()
        self.events.put_nowait(event)
