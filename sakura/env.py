from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv
from pydantic import AnyHttpUrl, ValidationError

from .constants import (
    CREDENTIALS_FILE,
    HTTP_TIMEOUT_SECONDS,
    LOGGER,
    MC_LOGIN_URL,
    MC_PROFILE_URL,
    MSA_AUTHORIZE_URL,
    MSA_SCOPES,
    MSA_TOKEN_URL,
    REDIRECT_PATH,
    REDIRECT_PORT,
    REDIRECT_TIMEOUT_SECONDS,
    XBL_AUTH_URL,
    XSTS_AUTH_URL,
)

ENDPOINT_ENV_DEFAULTS = {
    "SAKURA_MSA_AUTHORIZE_URL": MSA_AUTHORIZE_URL,
    "SAKURA_MSA_TOKEN_URL": MSA_TOKEN_URL,
    "SAKURA_XBL_AUTH_URL": XBL_AUTH_URL,
    "SAKURA_XSTS_AUTH_URL": XSTS_AUTH_URL,
    "SAKURA_MC_LOGIN_URL": MC_LOGIN_URL,
    "SAKURA_MC_PROFILE_URL": MC_PROFILE_URL,
}


@dataclass(frozen=True)
class Settings:
    """Resolved launcher configuration.

    The Microsoft client id has no usable default: it belongs to whoever
    registered the application, so it always comes from the environment.
    """

    client_id: str
    scopes: tuple[str, ...] = MSA_SCOPES
    redirect_port: int = REDIRECT_PORT
    redirect_path: str = REDIRECT_PATH
    redirect_timeout: float = REDIRECT_TIMEOUT_SECONDS
    http_timeout: float = HTTP_TIMEOUT_SECONDS
    credentials_path: Path = CREDENTIALS_FILE
    authorize_url: str = MSA_AUTHORIZE_URL
    token_url: str = MSA_TOKEN_URL
    xbl_url: str = XBL_AUTH_URL
    xsts_url: str = XSTS_AUTH_URL
    login_url: str = MC_LOGIN_URL
    profile_url: str = MC_PROFILE_URL

    @property
    def redirect_uri(self) -> str:
        return f"http://localhost:{self.redirect_port}{self.redirect_path}"


def is_truthy(value: str | None) -> bool:
    if value is None:
        return False
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_env_int(key: str, default: int) -> int:
    raw = os.getenv(key, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError(f"{key} must be an integer value.")


def _get_env_float(key: str, default: float) -> float:
    raw = os.getenv(key, "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        raise RuntimeError(f"{key} must be a number of seconds.")
    if value <= 0:
        raise RuntimeError(f"{key} must be greater than zero.")
    return value


def _get_env_url(key: str, default: str) -> str:
    raw = os.getenv(key, "").strip()
    if not raw:
        return default
    try:
        AnyHttpUrl(raw)
    except ValidationError:
        raise RuntimeError(f"{key} must be a valid http(s) URL, got {raw!r}.")
    return raw


def load_env() -> None:
    env_path = Path(__file__).resolve().parent.parent / ".env"
    if not env_path.exists():
        return
    load_dotenv(env_path, override=True)


def validate_env() -> None:
    if not os.getenv("SAKURA_MSA_CLIENT_ID", "").strip():
        raise RuntimeError(
            "Missing required environment variable: SAKURA_MSA_CLIENT_ID "
            "(the Azure application id registered for this launcher)."
        )

    port = _get_env_int("SAKURA_REDIRECT_PORT", REDIRECT_PORT)
    if not 0 < port < 65536:
        raise RuntimeError("SAKURA_REDIRECT_PORT must be between 1 and 65535.")

    path = os.getenv("SAKURA_REDIRECT_PATH", REDIRECT_PATH).strip()
    if not path.startswith("/"):
        raise RuntimeError("SAKURA_REDIRECT_PATH must start with '/'.")

    for key, default in ENDPOINT_ENV_DEFAULTS.items():
        _get_env_url(key, default)

    scopes = os.getenv("SAKURA_MSA_SCOPES", " ".join(MSA_SCOPES)).split()
    if "XboxLive.offline_access" not in scopes:
        LOGGER.warning(
            "SAKURA_MSA_SCOPES is missing XboxLive.offline_access; "
            "no refresh token will be issued and every session needs a browser sign-in."
        )


def load_settings() -> Settings:
    scopes = tuple(os.getenv("SAKURA_MSA_SCOPES", " ".join(MSA_SCOPES)).split())
    credentials_file = os.getenv("SAKURA_CREDENTIALS_FILE", "").strip()

    return Settings(
        client_id=os.getenv("SAKURA_MSA_CLIENT_ID", "").strip(),
        scopes=scopes or MSA_SCOPES,
        redirect_port=_get_env_int("SAKURA_REDIRECT_PORT", REDIRECT_PORT),
        redirect_path=os.getenv("SAKURA_REDIRECT_PATH", REDIRECT_PATH).strip() or REDIRECT_PATH,
        redirect_timeout=_get_env_float("SAKURA_REDIRECT_TIMEOUT", REDIRECT_TIMEOUT_SECONDS),
        http_timeout=_get_env_float("SAKURA_HTTP_TIMEOUT", HTTP_TIMEOUT_SECONDS),
        credentials_path=Path(credentials_file).expanduser() if credentials_file else CREDENTIALS_FILE,
        authorize_url=_get_env_url("SAKURA_MSA_AUTHORIZE_URL", MSA_AUTHORIZE_URL),
        token_url=_get_env_url("SAKURA_MSA_TOKEN_URL", MSA_TOKEN_URL),
        xbl_url=_get_env_url("SAKURA_XBL_AUTH_URL", XBL_AUTH_URL),
        xsts_url=_get_env_url("SAKURA_XSTS_AUTH_URL", XSTS_AUTH_URL),
        login_url=_get_env_url("SAKURA_MC_LOGIN_URL", MC_LOGIN_URL),
        profile_url=_get_env_url("SAKURA_MC_PROFILE_URL", MC_PROFILE_URL),
    )


def setup_logging() -> bool:
    debug_enabled = is_truthy(os.getenv("SAKURA_DEBUG", "1"))
    if debug_enabled:
        logging.basicConfig(level=logging.INFO)
        LOGGER.setLevel(logging.INFO)
    return debug_enabled
