"""口令邮件投递。"""

from __future__ import annotations

from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
import logging
import smtplib
from typing import Protocol

from sqlauth.core.config import Settings
from sqlauth.exceptions import InfrastructureError

logger = logging.getLogger("sqlauth")


class PasscodeDelivery(Protocol):
    """投递协作方：负责传输与模板，核心只提供地址与明文口令。"""

    def send(self, destination: str, passcode: str) -> None: ...


class SmtpPasscodeMailer:
    """通过 SMTP 发送口令邮件。"""

    def __init__(self, settings: Settings) -> None:
        self.smtp_host = settings.mail_smtp_host
        self.smtp_port = settings.mail_smtp_port
        self.smtp_username = settings.mail_smtp_username
        self.smtp_password = settings.mail_smtp_password
        self.starttls = settings.mail_smtp_starttls
        self.timeout = settings.mail_smtp_timeout_seconds
        self.from_email = settings.mail_from
        self.subject = settings.mail_subject

    def build_message(self, destination: str, passcode: str) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        msg["From"] = self.from_email
        msg["To"] = destination
        msg["Subject"] = self.subject

        plain_content = (
            f"Your new passcode is: {passcode}\n\n"
            "It replaces your previous password. Do not share it with anyone.\n"
        )
        html_content = f"""
<!DOCTYPE html>
<html>
<head><meta charset="utf-8"></head>
<body>
    <p>Your new passcode is:</p>
    <p style="font-size: 24px; font-weight: bold; letter-spacing: 3px;">{passcode}</p>
    <p>It replaces your previous password. Do not share it with anyone.</p>
</body>
</html>
"""
        msg.attach(MIMEText(plain_content, "plain", "utf-8"))
        msg.attach(MIMEText(html_content, "html", "utf-8"))
        return msg

    def send(self, destination: str, passcode: str) -> None:
        msg = self.build_message(destination, passcode)
        try:
            with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=self.timeout) as server:
                if self.starttls:
                    server.starttls()
                if self.smtp_username and self.smtp_password:
                    server.login(self.smtp_username, self.smtp_password)
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as exc:
            raise InfrastructureError(f"passcode delivery to {destination} failed") from exc
        logger.info("passcode mail sent to=%s", destination)
