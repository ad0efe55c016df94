import asyncio
import json
import urllib.parse

import httpx
import pytest

from auth.authenticator import Authenticator
from auth.credentials import AccountCredentials, CredentialStage
from auth.errors import (
    AuthorizationDenied,
    CsrfMismatch,
    ErrorKind,
    HttpFailure,
    RedirectTimeout,
)
from auth.login_flow import LoginFailed, LoginFlow, LoginStarted, LoginState, LoginSucceeded
from auth.models import TokenWithExpiry, XstsToken
from auth.msa_oauth2 import generate_code_challenge
from auth.redirect_server import RedirectListener
from auth.token_store import MemoryCredentialStore
from sakura.http import build_client
from tests.auth_helpers import NOW, form_of, redirect_url

EXPIRED = TokenWithExpiry("expired", NOW - 1)


class FakeServices:
    """MockTransport handler answering each sign-in endpoint by URL."""

    def __init__(self, settings, xbl_payload, xsts_payload, profile_payload) -> None:
        self.settings = settings
        self.requests: list[httpx.Request] = []
        self.routes = {
            settings.token_url: (
                200,
                {"access_token": "msa-access", "refresh_token": "msa-refresh", "expires_in": 3600},
            ),
            settings.xbl_url: (200, xbl_payload),
            settings.xsts_url: (200, xsts_payload),
            settings.login_url: (200, {"access_token": "mc-access", "expires_in": 86400}),
            settings.profile_url: (200, profile_payload),
        }

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        status, payload = self.routes[str(request.url)]
        return httpx.Response(status, json=payload)

    def urls(self) -> list[str]:
        return [str(request.url) for request in self.requests]

    def request_to(self, url: str) -> httpx.Request:
        return next(request for request in self.requests if str(request.url) == url)


class FakeBrowser:
    """Follows the authorization URL by hitting the loopback redirect."""

    def __init__(self, port: int, *, opened: bool = True, **overrides) -> None:
        self.port = port
        self.opened = opened
        self.overrides = overrides
        self.urls: list[str] = []
        self._tasks: list[asyncio.Task] = []

    def __call__(self, url: str) -> bool:
        self.urls.append(url)
        state = urllib.parse.parse_qs(urllib.parse.urlparse(url).query)["state"][0]
        params = {"code": "auth-code", "state": state, **self.overrides}
        params = {key: value for key, value in params.items() if value is not None}
        self._tasks.append(asyncio.get_running_loop().create_task(self._follow(params)))
        return self.opened

    async def _follow(self, params: dict) -> httpx.Response:
        async with httpx.AsyncClient(trust_env=False) as client:
            return await client.get(redirect_url(self.port, **params))

    async def responses(self) -> list[httpx.Response]:
        return await asyncio.gather(*self._tasks)

    def query(self) -> dict[str, list[str]]:
        return urllib.parse.parse_qs(urllib.parse.urlparse(self.urls[0]).query)


def no_browser(url: str) -> bool:
    raise AssertionError(f"browser should not be opened: {url}")


@pytest.fixture
def services(settings, xbl_payload, xsts_payload, profile_payload) -> FakeServices:
    return FakeServices(settings, xbl_payload, xsts_payload, profile_payload)


def make_flow(settings, client, store, open_browser, **kwargs) -> LoginFlow:
    return LoginFlow(
        Authenticator(settings, client=client, clock=lambda: NOW),
        RedirectListener(port=settings.redirect_port, path=settings.redirect_path),
        store,
        open_browser=open_browser,
        clock=lambda: NOW,
        **kwargs,
    )


def drain(queue: asyncio.Queue) -> list:
    events = []
    while not queue.empty():
        events.append(queue.get_nowait())
    return events


@pytest.mark.asyncio
async def test_first_login_runs_the_whole_chain(settings, services) -> None:
    store = MemoryCredentialStore()
    browser = FakeBrowser(settings.redirect_port)

    async with build_client(transport=httpx.MockTransport(services)) as client:
        flow = make_flow(settings, client, store, browser)
        credentials = await flow.login()

    assert services.urls() == [
        settings.token_url,
        settings.xbl_url,
        settings.xsts_url,
        settings.login_url,
        settings.profile_url,
    ]

    token_form = form_of(services.request_to(settings.token_url))
    assert token_form["grant_type"] == ["authorization_code"]
    assert token_form["code"] == ["auth-code"]
    assert browser.query()["code_challenge"] == [
        generate_code_challenge(token_form["code_verifier"][0])
    ]

    assert credentials.msa_access == TokenWithExpiry("msa-access", NOW + 3600)
    assert credentials.msa_refresh == "msa-refresh"
    assert credentials.xsts_token.user_hash == "user-hash-123"
    assert credentials.minecraft_access == TokenWithExpiry("mc-access", NOW + 86400)
    assert credentials.minecraft_profile.name == "Notch"
    assert credentials.stage(NOW) is CredentialStage.MINECRAFT_ACCESS
    assert await store.load() == credentials

    assert flow.state is LoginState.SUCCEEDED
    assert drain(flow.events) == [LoginStarted(), LoginSucceeded(credentials.minecraft_profile)]
    assert [response.status_code for response in await browser.responses()] == [200]


@pytest.mark.asyncio
async def test_xbox_rejection_stops_the_chain(settings, services) -> None:
    services.routes[settings.xbl_url] = (401, {})
    store = MemoryCredentialStore()
    browser = FakeBrowser(settings.redirect_port)

    async with build_client(transport=httpx.MockTransport(services)) as client:
        flow = make_flow(settings, client, store, browser)
        with pytest.raises(HttpFailure) as excinfo:
            await flow.login()

    assert excinfo.value.status == 401
    assert services.urls() == [settings.token_url, settings.xbl_url]
    assert await store.load() is None
    assert flow.state is LoginState.FAILED

    events = drain(flow.events)
    assert events[0] == LoginStarted()
    assert isinstance(events[1], LoginFailed)
    assert events[1].kind is ErrorKind.HTTP_FAILURE
    assert "rejected" in events[1].message
    await browser.responses()


@pytest.mark.asyncio
async def test_valid_minecraft_token_only_refreshes_profile(settings, services) -> None:
    stored = AccountCredentials(
        msa_refresh="msa-refresh",
        minecraft_access=TokenWithExpiry("stored-mc", NOW + 60),
    )
    store = MemoryCredentialStore(stored)

    async with httpx.AsyncClient(transport=httpx.MockTransport(services)) as client:
        credentials = await make_flow(settings, client, store, no_browser).login()

    assert services.urls() == [settings.profile_url]
    assert services.requests[0].headers["Authorization"] == "Bearer stored-mc"
    assert credentials.minecraft_access == stored.minecraft_access
    assert credentials.minecraft_profile.name == "Notch"


@pytest.mark.asyncio
async def test_valid_xsts_token_skips_to_minecraft_login(settings, services) -> None:
    stored = AccountCredentials(
        xsts_token=XstsToken("stored-xsts", NOW + 60, "stored-uhs"),
        minecraft_access=EXPIRED,
    )

    async with httpx.AsyncClient(transport=httpx.MockTransport(services)) as client:
        credentials = await make_flow(
            settings, client, MemoryCredentialStore(stored), no_browser
        ).login()

    assert services.urls() == [settings.login_url, settings.profile_url]
    body = json.loads(services.requests[0].content)
    assert body == {"identityToken": "XBL3.0 x=stored-uhs;stored-xsts"}
    assert credentials.minecraft_access.token == "mc-access"


@pytest.mark.asyncio
async def test_refresh_token_resumes_without_browser(settings, services) -> None:
    services.routes[settings.token_url] = (
        200,
        {"access_token": "fresh-access", "expires_in": 3600},
    )
    stored = AccountCredentials(msa_access=EXPIRED, msa_refresh="old-refresh", xbl_token=EXPIRED)
    store = MemoryCredentialStore(stored)

    async with httpx.AsyncClient(transport=httpx.MockTransport(services)) as client:
        credentials = await make_flow(settings, client, store, no_browser).login()

    assert services.urls() == [
        settings.token_url,
        settings.xbl_url,
        settings.xsts_url,
        settings.login_url,
        settings.profile_url,
    ]
    form = form_of(services.request_to(settings.token_url))
    assert form["grant_type"] == ["refresh_token"]
    assert form["refresh_token"] == ["old-refresh"]
    assert form["scope"] == ["XboxLive.signin XboxLive.offline_access"]

    xbl_body = json.loads(services.request_to(settings.xbl_url).content)
    assert xbl_body["Properties"]["RpsTicket"] == "d=fresh-access"
    assert credentials.msa_refresh == "old-refresh"
    assert (await store.load()).msa_access == TokenWithExpiry("fresh-access", NOW + 3600)


@pytest.mark.asyncio
async def test_interactive_login_ignores_stored_credentials(settings, services) -> None:
    stored = AccountCredentials(minecraft_access=TokenWithExpiry("stored-mc", NOW + 60))
    browser = FakeBrowser(settings.redirect_port)

    async with httpx.AsyncClient(transport=httpx.MockTransport(services)) as client:
        credentials = await make_flow(
            settings, client, MemoryCredentialStore(stored), browser
        ).login(interactive=True)

    assert len(browser.urls) == 1
    assert credentials.minecraft_access.token == "mc-access"
    await browser.responses()


@pytest.mark.asyncio
async def test_unopened_browser_logs_authorization_url(settings, services, caplog) -> None:
    browser = FakeBrowser(settings.redirect_port, opened=False)

    async with httpx.AsyncClient(transport=httpx.MockTransport(services)) as client:
        await make_flow(settings, client, MemoryCredentialStore(), browser).login()

    assert browser.urls[0] in caplog.text
    await browser.responses()


@pytest.mark.asyncio
async def test_denied_authorization_makes_no_token_request(settings, services) -> None:
    browser = FakeBrowser(
        settings.redirect_port,
        code=None,
        error="access_denied",
        error_description="The user cancelled.",
    )
    store = MemoryCredentialStore()

    async with httpx.AsyncClient(transport=httpx.MockTransport(services)) as client:
        flow = make_flow(settings, client, store, browser)
        with pytest.raises(AuthorizationDenied) as excinfo:
            await flow.login()

    assert excinfo.value.error == "access_denied"
    assert excinfo.value.description == "The user cancelled."
    assert services.requests == []
    assert await store.load() is None
    assert drain(flow.events)[-1].kind is ErrorKind.AUTHORIZATION_DENIED
    assert [response.status_code for response in await browser.responses()] == [400]


@pytest.mark.asyncio
async def test_forged_state_is_rejected_before_token_exchange(settings, services) -> None:
    browser = FakeBrowser(settings.redirect_port, state="forged")

    async with httpx.AsyncClient(transport=httpx.MockTransport(services)) as client:
        flow = make_flow(settings, client, MemoryCredentialStore(), browser)
        with pytest.raises(CsrfMismatch) as excinfo:
            await flow.login()

    assert excinfo.value.received_state == "forged"
    assert services.requests == []
    assert drain(flow.events)[-1].kind is ErrorKind.CSRF_MISMATCH
    await browser.responses()


@pytest.mark.asyncio
async def test_missing_redirect_times_out(settings, services) -> None:
    async with httpx.AsyncClient(transport=httpx.MockTransport(services)) as client:
        flow = make_flow(
            settings,
            client,
            MemoryCredentialStore(),
            lambda url: True,
            redirect_timeout=0.1,
        )
        with pytest.raises(RedirectTimeout):
            await flow.login()

    assert services.requests == []
    assert flow.state is LoginState.FAILED
    assert drain(flow.events)[-1].kind is ErrorKind.TIMEOUT


@pytest.mark.asyncio
async def test_store_failure_is_reported_as_unexpected(settings, services) -> None:
    class BrokenStore(MemoryCredentialStore):
        async def save(self, credentials: AccountCredentials) -> None:
            raise OSError("disk full")

    stored = AccountCredentials(minecraft_access=TokenWithExpiry("stored-mc", NOW + 60))

    async with httpx.AsyncClient(transport=httpx.MockTransport(services)) as client:
        flow = make_flow(settings, client, BrokenStore(stored), no_browser)
        with pytest.raises(OSError):
            await flow.login()

    failed = drain(flow.events)[-1]
    assert failed.kind is ErrorKind.UNEXPECTED
    assert "disk full" in failed.message


@pytest.mark.asyncio
async def test_second_login_while_waiting_is_refused(settings, services) -> None:
    opened = asyncio.Event()

    def open_browser(url: str) -> bool:
        opened.set()
        return True

    async with httpx.AsyncClient(transport=httpx.MockTransport(services)) as client:
        flow = make_flow(settings, client, MemoryCredentialStore(), open_browser)
        first = asyncio.create_task(flow.login())
        await opened.wait()

        with pytest.raises(RuntimeError, match="already in progress"):
            await flow.login()

        first.cancel()
        with pytest.raises(asyncio.CancelledError):
            await first

    assert flow.state is LoginState.IDLE
    assert drain(flow.events) == [LoginStarted()]


@pytest.mark.asyncio
async def test_sign_out_clears_the_store(settings) -> None:
    store = MemoryCredentialStore(AccountCredentials(msa_refresh="refresh"))
    flow = make_flow(settings, None, store, no_browser)

    await flow.sign_out()

    assert await store.load() is None
    assert flow.state is LoginState.IDLE


@pytest.mark.asyncio
async def test_undrained_events_keep_only_the_newest(settings, services) -> None:
    services.routes[settings.profile_url] = (500, {})
    stored = AccountCredentials(minecraft_access=TokenWithExpiry("stored-mc", NOW + 60))

    async with httpx.AsyncClient(transport=httpx.MockTransport(services)) as client:
        flow = make_flow(
            settings, client, MemoryCredentialStore(stored), no_browser, event_buffer=2
        )
        with pytest.raises(HttpFailure):
            await flow.login()
        services.routes[settings.profile_url] = (
            200,
            {"id": "069a79f444e94726a5befca90e38aaf5", "name": "Notch"},
        )
        credentials = await flow.login()

    assert flow.events.qsize() == 2
    assert drain(flow.events) == [LoginStarted(), LoginSucceeded(credentials.minecraft_profile)]
