from __future__ import annotations

import re
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone

from auth.errors import MalformedResponse, MissingField


def require_str(payload: dict, name: str) -> str:
    value = payload.get(name)
    if not isinstance(value, str) or not value:
        raise MissingField(name)
    return value


def require_seconds(payload: dict, name: str) -> int:
    value = payload.get(name)
    if value is None:
        raise MissingField(name)
    if isinstance(value, bool) or not isinstance(value, int):
        raise MalformedResponse(f"{name} must be an integer number of seconds.")
    return value


def optional_str(payload: dict, name: str) -> str | None:
    value = payload.get(name)
    return value if isinstance(value, str) and value else None


def parse_timestamp(value: str) -> float:
    """Parse an ISO-8601 instant such as ``2024-05-01T10:00:00.1234567Z``."""
    # Xbox services send 7 fractional digits; datetime keeps at most 6.
    normalized = re.sub(r"(\.\d{6})\d+", r"\1", value)
    try:
        parsed = datetime.fromisoformat(normalized)
    except ValueError as error:
        raise MalformedResponse(f"Invalid timestamp {value!r}.") from error
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.timestamp()


@dataclass(frozen=True)
class PendingAuthorization:
    authorization_url: str
    state: str
    code_verifier: str


@dataclass(frozen=True)
class TokenWithExpiry:
    token: str
    expiry: float

    def is_valid(self, now: float | None = None) -> bool:
        current = time.time() if now is None else now
        return current < self.expiry

    def to_payload(self) -> dict:
        return {"token": self.token, "expiry": self.expiry}

    @classmethod
    def from_payload(cls, payload: dict) -> "TokenWithExpiry":
        return cls(token=payload["token"], expiry=float(payload["expiry"]))


@dataclass(frozen=True)
class XstsToken:
    token: str
    expiry: float
    user_hash: str

    def is_valid(self, now: float | None = None) -> bool:
        current = time.time() if now is None else now
        return current < self.expiry

    def to_payload(self) -> dict:
        return {"token": self.token, "expiry": self.expiry, "user_hash": self.user_hash}

    @classmethod
    def from_payload(cls, payload: dict) -> "XstsToken":
        return cls(
            token=payload["token"],
            expiry=float(payload["expiry"]),
            user_hash=payload["user_hash"],
        )


@dataclass(frozen=True)
class MsaTokens:
    access_token: TokenWithExpiry
    refresh_token: str | None

    @classmethod
    def from_payload(cls, payload: dict, *, now: float) -> "MsaTokens":
        access_token = require_str(payload, "access_token")
        expires_in = require_seconds(payload, "expires_in")
        return cls(
            access_token=TokenWithExpiry(access_token, now + expires_in),
            refresh_token=optional_str(payload, "refresh_token"),
        )


@dataclass(frozen=True)
class RedirectResult:
    code: str | None
    state: str | None
    error: str | None = None
    error_description: str | None = None


@dataclass(frozen=True)
class Skin:
    id: str | None = None
    state: str | None = None
    url: str | None = None
    variant: str | None = None

    @classmethod
    def from_payload(cls, payload: dict) -> "Skin":
        return cls(
            id=payload.get("id"),
            state=payload.get("state"),
            url=payload.get("url"),
            variant=payload.get("variant"),
        )


@dataclass(frozen=True)
class Cape:
    id: str | None = None
    state: str | None = None
    url: str | None = None
    alias: str | None = None

    @classmethod
    def from_payload(cls, payload: dict) -> "Cape":
        return cls(
            id=payload.get("id"),
            state=payload.get("state"),
            url=payload.get("url"),
            alias=payload.get("alias"),
        )


@dataclass(frozen=True)
class MinecraftProfile:
    id: str
    name: str
    skins: tuple[Skin, ...] = field(default_factory=tuple)
    capes: tuple[Cape, ...] = field(default_factory=tuple)

    @classmethod
    def from_payload(cls, payload: dict) -> "MinecraftProfile":
        skins = payload.get("skins") or []
        capes = payload.get("capes") or []
        if not isinstance(skins, list) or not isinstance(capes, list):
            raise MalformedResponse("Profile skins and capes must be lists.")
        return cls(
            id=require_str(payload, "id"),
            name=require_str(payload, "name"),
            skins=tuple(Skin.from_payload(item) for item in skins if isinstance(item, dict)),
            capes=tuple(Cape.from_payload(item) for item in capes if isinstance(item, dict)),
        )

    def to_payload(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "skins": [asdict(skin) for skin in self.skins],
            "capes": [asdict(cape) for cape in self.capes],
        }
