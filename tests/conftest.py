import socket

import pytest

from sakura.env import Settings
from tests.auth_helpers import NOW


@pytest.fixture
def free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


@pytest.fixture
def settings(free_port) -> Settings:
    return Settings(client_id="client-123", redirect_port=free_port)


@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture
def xbl_payload() -> dict:
    return {
        "IssueInstant": "2023-11-14T22:13:20.0000000Z",
        "NotAfter": "2023-11-29T22:13:20.1234567Z",
        "Token": "xbl-token",
        "DisplayClaims": {"xui": [{"uhs": "user-hash-xbl"}]},
    }


@pytest.fixture
def xsts_payload() -> dict:
    return {
        "IssueInstant": "2023-11-14T22:13:20.0000000Z",
        "NotAfter": "2023-11-15T14:13:20.0000000Z",
        "Token": "xsts-token",
        "DisplayClaims": {"xui": [{"uhs": "user-hash-123"}]},
    }


@pytest.fixture
def profile_payload() -> dict:
    return {
        "id": "069a79f444e94726a5befca90e38aaf5",
        "name": "Notch",
        "skins": [
            {
                "id": "skin-1",
                "state": "ACTIVE",
                "url": "http://textures.minecraft.net/texture/abc",
                "variant": "CLASSIC",
            }
        ],
        "capes": [],
    }
