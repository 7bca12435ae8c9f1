from __future__ import annotations

import smtplib
from email.message import EmailMessage

from rebooked.integrations.email.base import EmailMessageSpec, EmailProvider, EmailResult


class SmtpEmailProvider(EmailProvider):
    name = "smtp"

    def __init__(self, *, host: str, port: int = 587, user: str = "", password: str = "", sender: str = "", reply_to: str = ""):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.sender = sender or user or "no-reply@rebooked.co.za"
        self.reply_to = reply_to

    def _build(self, message: EmailMessageSpec) -> EmailMessage:
        msg = EmailMessage()
        msg["Subject"] = message.subject
        msg["From"] = self.sender
        msg["To"] = message.to
        if self.reply_to:
            msg["Reply-To"] = self.reply_to
        msg.set_content(message.text or "Please view this email in an HTML capable client.")
        msg.add_alternative(message.html, subtype="html")
        return msg

    def send(self, message: EmailMessageSpec) -> EmailResult:
        if not (message.to or "").strip():
            return EmailResult(ok=False, code="EMAIL_INVALID_RECIPIENT", message="missing recipient")
        try:
            with smtplib.SMTP(self.host, self.port, timeout=10) as server:
                server.ehlo()
                try:
                    server.starttls()
                    server.ehlo()
                except smtplib.SMTPNotSupportedError:
                    pass
                if self.user and self.password:
                    server.login(self.user, self.password)
                server.send_message(self._build(message))
        except smtplib.SMTPAuthenticationError as e:
            return EmailResult(ok=False, code="EMAIL_AUTH_FAILED", message=str(e)[:200])
        except smtplib.SMTPRecipientsRefused as e:
            return EmailResult(ok=False, code="EMAIL_INVALID_RECIPIENT", message=str(e)[:200])
        except (smtplib.SMTPException, OSError) as e:
            return EmailResult(ok=False, code="EMAIL_PROVIDER_DOWN", message=str(e)[:200])
        return EmailResult(ok=True, code="OK", message="sent", raw={"to": message.to})
