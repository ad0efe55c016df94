from __future__ import annotations

import asyncio
import sys
import webbrowser
from typing import Callable

import httpx

from auth.authenticator import Authenticator
from auth.credentials import CredentialStage
from auth.errors import describe_failure
from auth.login_flow import LoginFlow
from auth.redirect_server import RedirectListener
from auth.token_store import CredentialStore, FileCredentialStore
from sakura.constants import APP_VERSION, LOGGER
from sakura.env import Settings, load_env, load_settings, setup_logging, validate_env
from sakura.http import build_client

COMMANDS = ("login", "status", "logout")
INTERACTIVE_FLAG = "--interactive"
USAGE = f"usage: sakura-login [login [{INTERACTIVE_FLAG}] | status | logout]"
INTERACTIVE_HINT = f"Run `sakura-login login {INTERACTIVE_FLAG}` to sign in again in the browser."


def create_flow(
    settings: Settings,
    client: httpx.AsyncClient,
    *,
    store: CredentialStore | None = None,
    open_browser: Callable[[str], bool] = webbrowser.open,
) -> LoginFlow:
    return LoginFlow(
        Authenticator(settings, client=client),
        RedirectListener(port=settings.redirect_port, path=settings.redirect_path),
        store or FileCredentialStore(settings.credentials_path),
        open_browser=open_browser,
        redirect_timeout=settings.redirect_timeout,
    )


async def login(settings: Settings, *, interactive: bool = False) -> int:
    async with build_client(timeout=settings.http_timeout) as client:
        flow = create_flow(settings, client)
        try:
            credentials = await flow.login(interactive=interactive)
        except (RuntimeError, OSError) as error:
            message = describe_failure(error)
            print(message, file=sys.stderr)
            if not interactive and INTERACTIVE_FLAG not in message:
                print(INTERACTIVE_HINT, file=sys.stderr)
            return 1

    print(f"Logged in as {credentials.minecraft_profile.name} ({credentials.minecraft_profile.id})")
    return 0


async def status(settings: Settings) -> int:
    try:
        credentials = await FileCredentialStore(settings.credentials_path).load()
    except RuntimeError as error:
        print(f"{error} Run `sakura-login logout` to discard it.", file=sys.stderr)
        return 1
    if credentials is None:
        print("Not logged in.")
        return 1

    stage = credentials.stage()
    profile = credentials.minecraft_profile
    name = profile.name if profile else "unknown player"
    print(f"{name}: credentials valid up to stage {stage.name}")
    return 0 if stage is not CredentialStage.NONE else 1


async def logout(settings: Settings) -> int:
    await FileCredentialStore(settings.credentials_path).clear()
    print("Signed out.")
    return 0


async def run_command(command: str, settings: Settings, *, interactive: bool = False) -> int:
    if command == "login":
        return await login(settings, interactive=interactive)
    handlers = {"status": status, "logout": logout}
    return await handlers[command](settings)


def main(argv: list[str] | None = None) -> int:
    args = sys.argv[1:] if argv is None else argv
    command = args[0] if args else "login"
    options = args[1:]
    interactive = options == [INTERACTIVE_FLAG] and command == "login"
    if command not in COMMANDS or (options and not interactive):
        print(USAGE, file=sys.stderr)
        return 2

    load_env()
    setup_logging()
    if command == "login":
        validate_env()
    settings = load_settings()
    LOGGER.info("Sakura launcher sign-in %s command=%s", APP_VERSION, command)
    return asyncio.run(run_command(command, settings, interactive=interactive))


if __name__ == "__main__":
    raise SystemExit(main())
