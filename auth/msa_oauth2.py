from __future__ import annotations

import base64
import hashlib
import secrets
import time
import urllib.parse
from typing import Callable, Iterable

import httpx

from auth.models import MsaTokens, PendingAuthorization
from sakura.constants import LOGGER, MSA_AUTHORIZE_URL, MSA_SCOPES, MSA_TOKEN_URL
from sakura.http import request_json

STATE_BYTES = 32
VERIFIER_BYTES = 64


def generate_state() -> str:
    return secrets.token_urlsafe(STATE_BYTES)


def generate_code_verifier() -> str:
    # 64 random bytes encode to 86 characters, inside RFC 7636's 43..128 range.
    return secrets.token_urlsafe(VERIFIER_BYTES)


def generate_code_challenge(verifier: str) -> str:
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")


def build_authorization_url(
    client_id: str,
    redirect_uri: str,
    scopes: Iterable[str],
    state: str,
    code_challenge: str,
    *,
    authorize_url: str = MSA_AUTHORIZE_URL,
) -> str:
    query = {
        "client_id": client_id,
        "response_type": "code",
        "redirect_uri": redirect_uri,
        "scope": " ".join(scopes),
        "prompt": "select_account",
        "state": state,
        "code_challenge": code_challenge,
        "code_challenge_method": "S256",
    }
    return f"{authorize_url}?{urllib.parse.urlencode(query, quote_via=urllib.parse.quote)}"


def create_authorization(
    client_id: str,
    redirect_uri: str,
    scopes: Iterable[str] = MSA_SCOPES,
    *,
    authorize_url: str = MSA_AUTHORIZE_URL,
) -> PendingAuthorization:
    state = generate_state()
    verifier = generate_code_verifier()
    url = build_authorization_url(
        client_id=client_id,
        redirect_uri=redirect_uri,
        scopes=scopes,
        state=state,
        code_challenge=generate_code_challenge(verifier),
        authorize_url=authorize_url,
    )
    return PendingAuthorization(authorization_url=url, state=state, code_verifier=verifier)


async def _token_request(
    payload: dict[str, str],
    *,
    token_url: str,
    client: httpx.AsyncClient | None,
    clock: Callable[[], float],
) -> MsaTokens:
    LOGGER.info("Requesting Microsoft tokens grant_type=%s", payload["grant_type"])
    data = await request_json("POST", token_url, data=payload, client=client)
    return MsaTokens.from_payload(data, now=clock())


async def exchange_code(
    client_id: str,
    code: str,
    redirect_uri: str,
    code_verifier: str,
    *,
    token_url: str = MSA_TOKEN_URL,
    client: httpx.AsyncClient | None = None,
    clock: Callable[[], float] = time.time,
) -> MsaTokens:
    return await _token_request(
        {
            "client_id": client_id,
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_uri,
            "code_verifier": code_verifier,
        },
        token_url=token_url,
        client=client,
        clock=clock,
    )


async def refresh_token(
    client_id: str,
    refresh_token: str,
    redirect_uri: str,
    scopes: Iterable[str] = MSA_SCOPES,
    *,
    token_url: str = MSA_TOKEN_URL,
    client: httpx.AsyncClient | None = None,
    clock: Callable[[], float] = time.time,
) -> MsaTokens:
    return await _token_request(
        {
            "client_id": client_id,
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "redirect_uri": redirect_uri,
            "scope": " ".join(scopes),
        },
        token_url=token_url,
        client=client,
        clock=clock,
    )
