from __future__ import annotations

from dataclasses import dataclass


@dataclass
class EmailMessageSpec:
    to: str
    subject: str
    html: str
    text: str = ""


@dataclass
class EmailResult:
    ok: bool
    code: str = ""
    message: str = ""
    raw: dict | None = None


class EmailProvider:
    name = "unknown"

    def send(self, message: EmailMessageSpec) -> EmailResult:
        raise NotImplementedError
