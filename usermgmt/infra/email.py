from __future__ import annotations

import logging
import os
import smtplib
from email.message import EmailMessage

logger = logging.getLogger(__name__)

EMAIL_ENABLED = os.getenv("EMAIL_ENABLED", "false").lower() in {"1", "true", "yes"}
SMTP_HOST = os.getenv("SMTP_HOST", "localhost")
SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
SMTP_USER = os.getenv("SMTP_USER")
SMTP_PASSWORD = os.getenv("SMTP_PASSWORD")
SMTP_FROM = os.getenv("SMTP_FROM", SMTP_USER or "no-reply@localhost")


class EmailSender:
    def send(self, recipient: str, subject: str, body: str) -> None:
        if not EMAIL_ENABLED:
            logger.info("email disabled, not sending [%s] to [%s]", subject, recipient)
            return

        message = EmailMessage()
        message["From"] = SMTP_FROM
        message["To"] = recipient
        message["Subject"] = subject
        message.set_content(body)

        with smtplib.SMTP(SMTP_HOST, SMTP_PORT) as server:
            server.starttls()
            if SMTP_USER and SMTP_PASSWORD:
                server.login(SMTP_USER, SMTP_PASSWORD)
            server.send_message(message)
        logger.info("sent [%s] to [%s]", subject, recipient)

    def send_validation_email(self, *, app_name: str, recipient: str, link: str) -> None:
        self.send(
            recipient,
            f"{app_name}: validate your account",
            f"Please open the following link to validate your account:\n\n{link}\n",
        )

    def send_reset_email(self, *, app_name: str, recipient: str, link: str) -> None:
        self.send(
            recipient,
            f"{app_name}: reset your password",
            f"Please open the following link to reset your password:\n\n{link}\n",
        )


email_sender = EmailSender()
