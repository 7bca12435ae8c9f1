from __future__ import annotations

import os

from rebooked.integrations.email.base import EmailMessageSpec, EmailProvider, EmailResult


class MockEmailProvider(EmailProvider):
    name = "mock"

    # Shared so tests can inspect what a request sent.
    outbox: list[EmailMessageSpec] = []

    def _force_failure(self, message: EmailMessageSpec) -> bool:
        subject = (message.subject or "").lower()
        return "[fail]" in subject or (os.getenv("MOCK_EMAIL_FORCE_FAIL") or "").strip() == "1"

    def send(self, message: EmailMessageSpec) -> EmailResult:
        if self._force_failure(message):
            return EmailResult(ok=False, code="EMAIL_PROVIDER_DOWN", message="mock forced failure")
        MockEmailProvider.outbox.append(message)
        return EmailResult(ok=True, code="OK", message="mock_sent", raw={"to": message.to})

    @classmethod
    def reset(cls) -> None:
        cls.outbox.clear()
