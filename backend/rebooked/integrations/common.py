from __future__ import annotations

from dataclasses import dataclass


@dataclass
class IntegrationResult:
    ok: bool
    code: str = ""
    message: str = ""
    raw: dict | None = None


class IntegrationDisabledError(RuntimeError):
    code = "INTEGRATION_DISABLED"


class IntegrationMisconfiguredError(RuntimeError):
    code = "INTEGRATION_MISCONFIGURED"


class IntegrationRequestError(RuntimeError):
    """A provider call failed; `code` is stable and safe to branch on."""

    def __init__(self, code: str, message: str = "", *, status: int | None = None, raw: dict | None = None):
        super().__init__(f"{code}:{message}" if message else code)
        self.code = code
        self.message = message or code
        self.status = status
        self.raw = raw or {}


def map_http_error(prefix: str, status: int) -> str:
    if status in (401, 403):
        return f"{prefix}_AUTH_FAILED"
    if status == 429:
        return f"{prefix}_RATE_LIMITED"
    if status in (400, 409, 422):
        return f"{prefix}_REJECTED"
    return f"{prefix}_PROVIDER_DOWN"


def response_json(resp) -> dict:
    try:
        data = resp.json() if resp.content else {}
    except ValueError:
        return {"payload": (resp.text or "")[:500]}
    return data if isinstance(data, dict) else {"payload": data}
