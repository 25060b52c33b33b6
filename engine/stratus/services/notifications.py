"""Notification channels — chat webhook and SMTP email delivery.

Channels are best-effort: every send returns True/False and logs failures,
never raising into the caller.
"""

from __future__ import annotations

import json
import logging
import smtplib
import urllib.error
import urllib.request
from abc import ABC, abstractmethod
from dataclasses import dataclass
from email.mime.text import MIMEText

from ..config import Settings, settings
from .redact import mask_secrets

logger = logging.getLogger(__name__)


class NotificationChannel(ABC):
    @abstractmethod
    def send_webhook(self, text: str) -> bool:
        ...

    @abstractmethod
    def send_email(self, to: str, subject: str, body: str) -> bool:
        ...


@dataclass
class ChannelConfig:
    """Delivery destinations, read from ``STRATUS_*`` settings."""

    webhook_url: str = ""
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_use_tls: bool = True
    email_from: str = ""

    @classmethod
    def from_settings(cls, cfg: Settings = settings) -> "ChannelConfig":
        return cls(
            webhook_url=cfg.slack_webhook_url,
            smtp_host=cfg.smtp_host,
            smtp_port=cfg.smtp_port,
            smtp_user=cfg.smtp_user,
            smtp_password=cfg.smtp_password,
            smtp_use_tls=cfg.smtp_use_tls,
            email_from=cfg.email_from,
        )


class WebhookEmailChannel(NotificationChannel):
    """Slack-compatible incoming webhook + SMTP."""

    def __init__(self, config: ChannelConfig | None = None, timeout: float = 10.0) -> None:
        self.config = config or ChannelConfig.from_settings()
        self.timeout = timeout

    def send_webhook(self, text: str) -> bool:
        if not self.config.webhook_url:
            logger.debug("Webhook not configured — skipping")
            return False
        try:
            req = urllib.request.Request(
                self.config.webhook_url,
                data=json.dumps({"text": text}).encode(),
                headers={"Content-Type": "application/json"},
                method="POST",
            )
            with urllib.request.urlopen(req, timeout=self.timeout) as resp:
                ok = 200 <= resp.status < 300
            if not ok:
                logger.error("Webhook returned HTTP %s", resp.status)
            return ok
        except (urllib.error.URLError, OSError, ValueError) as e:
            # the webhook URL itself is a secret
            logger.error("Webhook failed: %s", mask_secrets(str(e)))
            return False

    def send_email(self, to: str, subject: str, body: str) -> bool:
        if not self.config.smtp_host or not self.config.smtp_user:
            logger.debug("SMTP not configured — skipping email to %s", to)
            return False
        try:
            msg = MIMEText(body, "html")
            msg["Subject"] = subject
            msg["From"] = self.config.email_from or self.config.smtp_user
            msg["To"] = to

            with smtplib.SMTP(self.config.smtp_host, self.config.smtp_port, timeout=self.timeout) as smtp:
                if self.config.smtp_use_tls:
                    smtp.starttls()
                smtp.login(self.config.smtp_user, self.config.smtp_password)
                smtp.send_message(msg)
            logger.info("Email sent to %s", to)
            return True
        except (smtplib.SMTPException, OSError) as e:
            logger.error("Email to %s failed: %s", to, mask_secrets(str(e)))
            return False
