from __future__ import annotations

import json
from enum import Enum


class ErrorKind(str, Enum):
    CSRF_MISMATCH = "csrf_mismatch"
    HTTP_FAILURE = "http_failure"
    MISSING_FIELD = "missing_field"
    MALFORMED_RESPONSE = "malformed_response"
    TIMEOUT = "timeout"
    AUTHORIZATION_DENIED = "authorization_denied"
    NETWORK_FAILURE = "network_failure"
    UNEXPECTED = "unexpected"


class AuthError(RuntimeError):
    """Base class for every failure of the sign-in chain.

    Each subclass pins ``kind`` so callers can branch on the failure without
    inspecting messages.
    """

    kind: ErrorKind


class CsrfMismatch(AuthError):
    kind = ErrorKind.CSRF_MISMATCH

    def __init__(self, expected_state: str, received_state: str | None) -> None:
        super().__init__("CSRF state mismatch between authorization request and redirect.")
        self.expected_state = expected_state
        self.received_state = received_state


class HttpFailure(AuthError):
    kind = ErrorKind.HTTP_FAILURE

    def __init__(self, status: int, body: str, *, url: str | None = None) -> None:
        target = f" from {url}" if url else ""
        super().__init__(f"HTTP {status}{target}: {body}")
        self.status = status
        self.body = body
        self.url = url


class MissingField(AuthError):
    kind = ErrorKind.MISSING_FIELD

    def __init__(self, name: str) -> None:
        super().__init__(f"Response is missing required field {name!r}.")
        self.name = name


class MalformedResponse(AuthError):
    kind = ErrorKind.MALFORMED_RESPONSE


class RedirectTimeout(AuthError):
    kind = ErrorKind.TIMEOUT

    def __init__(self, timeout: float) -> None:
        super().__init__(f"No authorization redirect received within {timeout:g} seconds.")
        self.timeout = timeout


class AuthorizationDenied(AuthError):
    kind = ErrorKind.AUTHORIZATION_DENIED

    def __init__(self, error: str, description: str | None = None) -> None:
        message = f"{error}: {description}" if description else error
        super().__init__(message)
        self.error = error
        self.description = description


class NetworkFailure(AuthError):
    kind = ErrorKind.NETWORK_FAILURE


# XSTS rejects some accounts with a 401 whose body carries an XErr code.
XSTS_ERROR_MESSAGES = {
    2148916233: "This Microsoft account has no Xbox profile. Sign in at xbox.com once, then retry.",
    2148916235: "Xbox Live is not available in this account's country or region.",
    2148916236: "This account needs adult verification on xbox.com before it can sign in.",
    2148916237: "This account needs adult verification on xbox.com before it can sign in.",
    2148916238: "This is a child account. An adult must add it to a Microsoft family first.",
}


def _json_body(body: str) -> dict:
    try:
        payload = json.loads(body)
    except ValueError:
        return {}
    return payload if isinstance(payload, dict) else {}


def describe_failure(error: Exception) -> str:
    if isinstance(error, HttpFailure):
        payload = _json_body(error.body)
        xerr = payload.get("XErr")
        if isinstance(xerr, int) and xerr in XSTS_ERROR_MESSAGES:
            return XSTS_ERROR_MESSAGES[xerr]
        if payload.get("error") == "invalid_grant":
            return (
                "Your saved Microsoft session has expired or was revoked. "
                "Sign in again in the browser with `sakura-login login --interactive`."
            )
        if error.status == 401:
            return (
                "Sign-in was rejected. Your saved session may have expired; "
                "sign in again with `sakura-login login --interactive`."
            )
        if error.status == 403:
            return "This account is not allowed to use Minecraft services."
        if error.status == 404:
            return "This account does not own Minecraft: Java Edition."
        if error.status == 429:
            return "Too many sign-in attempts. Please wait a moment and try again."
        if error.status >= 500:
            return "Microsoft or Minecraft services are having issues. Please try again later."
        return f"Sign-in request failed with status {error.status}."
    if isinstance(error, CsrfMismatch):
        return "The sign-in response did not match this login attempt. Please try again."
    if isinstance(error, RedirectTimeout):
        return "Timed out waiting for the browser sign-in to finish."
    if isinstance(error, AuthorizationDenied):
        return f"Microsoft sign-in was not completed: {error}"
    if isinstance(error, NetworkFailure):
        return "Could not reach the sign-in services. Check your connection and try again."
    return f"Sign-in failed: {error}"
