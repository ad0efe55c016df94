"""Xbox Live, XSTS and Minecraft services exchanges.

Each call consumes the token produced by the previous one:
MSA access token -> XBL token -> XSTS token + user hash -> Minecraft access
token -> profile. XBL and XSTS report absolute ``NotAfter`` instants, while
the Minecraft login reports a relative ``expires_in``.
"""

from __future__ import annotations

import time
from typing import Callable

import httpx

from auth.errors import MissingField
from auth.models import (
    MinecraftProfile,
    TokenWithExpiry,
    XstsToken,
    parse_timestamp,
    require_seconds,
    require_str,
)
from sakura.constants import LOGGER, MC_LOGIN_URL, MC_PROFILE_URL, XBL_AUTH_URL, XSTS_AUTH_URL
from sakura.http import request_json

XBL_RELYING_PARTY = "http://auth.xboxlive.com"
XBL_SITE_NAME = "user.auth.xboxlive.com"
XSTS_RELYING_PARTY = "rp://api.minecraftservices.com/"
XSTS_SANDBOX_ID = "RETAIL"


def _first_user_hash(payload: dict) -> str:
    claims = payload.get("DisplayClaims")
    xui = claims.get("xui") if isinstance(claims, dict) else None
    if isinstance(xui, list):
        for entry in xui:
            if isinstance(entry, dict) and isinstance(entry.get("uhs"), str) and entry["uhs"]:
                return entry["uhs"]
    raise MissingField("uhs")


async def authenticate_xbox(
    msa_access_token: str,
    *,
    url: str = XBL_AUTH_URL,
    client: httpx.AsyncClient | None = None,
) -> TokenWithExpiry:
    payload = await request_json(
        "POST",
        url,
        json={
            "RelyingParty": XBL_RELYING_PARTY,
            "TokenType": "JWT",
            "Properties": {
                "AuthMethod": "RPS",
                "SiteName": XBL_SITE_NAME,
                "RpsTicket": f"d={msa_access_token}",
            },
        },
        client=client,
    )
    return TokenWithExpiry(
        token=require_str(payload, "Token"),
        expiry=parse_timestamp(require_str(payload, "NotAfter")),
    )


async def obtain_xsts(
    xbl_token: str,
    *,
    url: str = XSTS_AUTH_URL,
    client: httpx.AsyncClient | None = None,
) -> XstsToken:
    payload = await request_json(
        "POST",
        url,
        json={
            "RelyingParty": XSTS_RELYING_PARTY,
            "TokenType": "JWT",
            "Properties": {
                "SandboxId": XSTS_SANDBOX_ID,
                "UserTokens": [xbl_token],
            },
        },
        client=client,
    )
    return XstsToken(
        token=require_str(payload, "Token"),
        expiry=parse_timestamp(require_str(payload, "NotAfter")),
        user_hash=_first_user_hash(payload),
    )


async def authenticate_minecraft(
    xsts_token: XstsToken,
    *,
    url: str = MC_LOGIN_URL,
    client: httpx.AsyncClient | None = None,
    clock: Callable[[], float] = time.time,
) -> TokenWithExpiry:
    payload = await request_json(
        "POST",
        url,
        json={"identityToken": f"XBL3.0 x={xsts_token.user_hash};{xsts_token.token}"},
        client=client,
    )
    access_token = require_str(payload, "access_token")
    expires_in = require_seconds(payload, "expires_in")
    token_type = payload.get("token_type")
    if token_type and str(token_type).lower() != "bearer":
        LOGGER.warning("Minecraft login returned unexpected token_type=%s", token_type)
    return TokenWithExpiry(access_token, clock() + expires_in)


async def get_minecraft_profile(
    access_token: str,
    *,
    url: str = MC_PROFILE_URL,
    client: httpx.AsyncClient | None = None,
) -> MinecraftProfile:
    payload = await request_json(
        "GET",
        url,
        headers={"Authorization": f"Bearer {access_token}"},
        client=client,
    )
    return MinecraftProfile.from_payload(payload)
