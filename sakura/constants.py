from __future__ import annotations

import logging
from pathlib import Path

LOGGER = logging.getLogger("sakura.auth")
APP_VERSION = "0.1.0"

MSA_AUTHORIZE_URL = "https://login.live.com/oauth20_authorize.srf"
MSA_TOKEN_URL = "https://login.live.com/oauth20_token.srf"
MSA_SCOPES = ("XboxLive.signin", "XboxLive.offline_access")

XBL_AUTH_URL = "https://user.auth.xboxlive.com/user/authenticate"
XSTS_AUTH_URL = "https://xsts.auth.xboxlive.com/xsts/authorize"

MC_LOGIN_URL = "https://api.minecraftservices.com/authentication/login_with_xbox"
MC_PROFILE_URL = "https://api.minecraftservices.com/minecraft/profile"

REDIRECT_HOSTS = ("127.0.0.1", "::1")
REDIRECT_PORT = 3160
REDIRECT_PATH = "/auth"
REDIRECT_TIMEOUT_SECONDS = 300.0
HTTP_TIMEOUT_SECONDS = 30.0

CREDENTIALS_FILE = Path.home() / ".sakura" / "credentials.json"
