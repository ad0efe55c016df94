from __future__ import annotations

from dataclasses import dataclass, replace
from enum import IntEnum

from auth.models import MinecraftProfile, MsaTokens, TokenWithExpiry, XstsToken


class CredentialStage(IntEnum):
    """How far along the sign-in chain the stored credentials still reach.

    Higher values are more useful: a valid ``MINECRAFT_ACCESS`` token needs no
    further exchanges, while ``NONE`` means a browser sign-in is required.
    """

    NONE = 0
    MSA_REFRESH = 1
    MSA_ACCESS = 2
    XBOX_LIVE = 3
    XSTS = 4
    MINECRAFT_ACCESS = 5


@dataclass(frozen=True)
class AccountCredentials:
    msa_access: TokenWithExpiry | None = None
    msa_refresh: str | None = None
    xbl_token: TokenWithExpiry | None = None
    xsts_token: XstsToken | None = None
    minecraft_access: TokenWithExpiry | None = None
    minecraft_profile: MinecraftProfile | None = None

    def stage(self, now: float | None = None) -> CredentialStage:
        if self.minecraft_access is not None and self.minecraft_access.is_valid(now):
            return CredentialStage.MINECRAFT_ACCESS
        if self.xsts_token is not None and self.xsts_token.is_valid(now):
            return CredentialStage.XSTS
        if self.xbl_token is not None and self.xbl_token.is_valid(now):
            return CredentialStage.XBOX_LIVE
        if self.msa_access is not None and self.msa_access.is_valid(now):
            return CredentialStage.MSA_ACCESS
        if self.msa_refresh:
            return CredentialStage.MSA_REFRESH
        return CredentialStage.NONE

    def needs_interactive_login(self, now: float | None = None) -> bool:
        return self.stage(now) is CredentialStage.NONE

    def with_msa_tokens(self, tokens: MsaTokens) -> "AccountCredentials":
        return replace(
            self,
            msa_access=tokens.access_token,
            msa_refresh=tokens.refresh_token or self.msa_refresh,
        )

    def to_payload(self) -> dict:
        return {
            "msa_access": self.msa_access.to_payload() if self.msa_access else None,
            "msa_refresh": self.msa_refresh,
            "xbl_token": self.xbl_token.to_payload() if self.xbl_token else None,
            "xsts_token": self.xsts_token.to_payload() if self.xsts_token else None,
            "minecraft_access": (
                self.minecraft_access.to_payload() if self.minecraft_access else None
            ),
            "minecraft_profile": (
                self.minecraft_profile.to_payload() if self.minecraft_profile else None
            ),
        }

    @classmethod
    def from_payload(cls, payload: dict) -> "AccountCredentials":
        def _load(key: str, loader):
            raw = payload.get(key)
            return loader(raw) if isinstance(raw, dict) else None

        refresh = payload.get("msa_refresh")
        return cls(
            msa_access=_load("msa_access", TokenWithExpiry.from_payload),
            msa_refresh=refresh if isinstance(refresh, str) and refresh else None,
            xbl_token=_load("xbl_token", TokenWithExpiry.from_payload),
            xsts_token=_load("xsts_token", XstsToken.from_payload),
            minecraft_access=_load("minecraft_access", TokenWithExpiry.from_payload),
            minecraft_profile=_load("minecraft_profile", MinecraftProfile.from_payload),
        )
