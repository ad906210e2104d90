"""
Mail transports used for procedure alerts.

Both transports take a recipient expression: a comma or semicolon separated
list of addresses or a single distribution-group alias.
"""
from __future__ import annotations

import email.utils
import json
import logging
import re
import smtplib
import ssl
import threading
from abc import ABC, abstractmethod
from email.mime.text import MIMEText
from typing import Any, Callable
from urllib.error import HTTPError, URLError
from urllib.parse import quote
from urllib.request import Request, urlopen

import msal

from eventmail.config import EmailSettings, GraphSettings, SmtpSettings
from eventmail.errors import ConfigurationError


logger = logging.getLogger("eventmail.notifiers")

GRAPH_AUTHORITY = "https://login.microsoftonline.com/{tenant}"
GRAPH_SEND_URL = "https://graph.microsoft.com/v1.0/users/{sender}/sendMail"
GRAPH_SCOPE = "https://graph.microsoft.com/.default"


def split_recipients(expression: str) -> list[str]:
    return [p.strip() for p in re.split(r"[;,]", expression or "") if p.strip()]


class Notifier(ABC):
    @abstractmethod
    def send(self, to_expression: str, subject: str, html_body: str) -> bool:
        raise NotImplementedError


class SmtpNotifier(Notifier):
    def __init__(self, settings: SmtpSettings, *, smtp_factory: Callable[..., smtplib.SMTP] = smtplib.SMTP) -> None:
        self.settings = settings
        self._smtp_factory = smtp_factory

    def build_message(self, recipients: list[str], subject: str, html_body: str) -> MIMEText:
        msg = MIMEText(html_body, "html", "utf-8")
        msg["From"] = self.settings.username
        msg["To"] = ", ".join(recipients)
        msg["Subject"] = subject
        msg["Date"] = email.utils.formatdate(localtime=True)
        return msg

    def send(self, to_expression: str, subject: str, html_body: str) -> bool:
        recipients = split_recipients(to_expression)
        if not recipients:
            logger.warning("No recipients in %r - skipping email", to_expression)
            return False
        msg = self.build_message(recipients, subject, html_body)
        s = self.settings
        try:
            with self._smtp_factory(s.host, s.port, timeout=30) as server:
                if s.use_tls:
                    server.starttls(context=ssl.create_default_context())
                if s.username and s.password:
                    server.login(s.username, s.password)
                server.sendmail(s.username, recipients, msg.as_string())
        except (smtplib.SMTPException, OSError) as e:
            logger.error("SMTP send failed to %s: %s", to_expression, e)
            return False
        logger.info("Email sent to %s subject=%s", to_expression, subject)
        return True


class GraphNotifier(Notifier):
    """
    Microsoft Graph `sendMail` using the client-credentials flow. Tokens come from
    an MSAL confidential client, which caches and refreshes them.
    """

    def __init__(
        self,
        settings: GraphSettings,
        *,
        opener: Callable[..., Any] = urlopen,
        timeout: float = 30,
        app_factory: Callable[..., Any] = msal.ConfidentialClientApplication,
    ) -> None:
        self.settings = settings
        self._open = opener
        self.timeout = timeout
        self._app_factory = app_factory
        self._app: Any = None
        self._lock = threading.Lock()

    def _client(self) -> Any:
        with self._lock:
            if self._app is None:
                s = self.settings
                self._app = self._app_factory(
                    s.client_id,
                    client_credential=s.client_secret,
                    authority=GRAPH_AUTHORITY.format(tenant=quote(s.tenant_id, safe="")),
                )
            return self._app

    def _access_token(self) -> str:
        payload = self._client().acquire_token_for_client(scopes=[GRAPH_SCOPE]) or {}
        token = str(payload.get("access_token", ""))
        if not token:
            raise RuntimeError(
                f"token request failed: {payload.get('error', '')} {payload.get('error_description', '')}".strip()
            )
        return token

    def _post(self, url: str, data: bytes, headers: dict[str, str]) -> int:
        req = Request(url, data=data, headers=headers, method="POST")
        with self._open(req, timeout=self.timeout) as r:
            return int(getattr(r, "status", 200))

    def build_payload(self, recipients: list[str], subject: str, html_body: str) -> dict[str, Any]:
        return {
            "message": {
                "subject": subject,
                "body": {"contentType": "HTML", "content": html_body},
                "toRecipients": [{"emailAddress": {"address": a}} for a in recipients],
            },
            "saveToSentItems": True,
        }

    def send(self, to_expression: str, subject: str, html_body: str) -> bool:
        recipients = split_recipients(to_expression)
        if not recipients:
            logger.warning("No recipients in %r - skipping email", to_expression)
            return False
        try:
            token = self._access_token()
            status = self._post(
                GRAPH_SEND_URL.format(sender=quote(self.settings.sender_address, safe="@")),
                json.dumps(self.build_payload(recipients, subject, html_body)).encode("utf-8"),
                {"Content-Type": "application/json", "Authorization": f"Bearer {token}"},
            )
        except HTTPError as e:
            logger.error("Graph sendMail failed http_status=%s: %s", e.code, e.reason)
            return False
        except (URLError, OSError, ValueError, RuntimeError) as e:
            logger.error("Graph sendMail failed: %s", e)
            return False
        if status >= 300:
            logger.error("Graph sendMail returned http_status=%s", status)
            return False
        logger.info("Email sent to %s subject=%s", to_expression, subject)
        return True


def build_notifier(settings: EmailSettings) -> Notifier:
    if settings.sender == "smtp":
        if not settings.smtp.username:
            raise ConfigurationError("email.smtp.username is required for the smtp sender")
        return SmtpNotifier(settings.smtp)
    g = settings.graph
    missing = [k for k in ("tenant_id", "client_id", "client_secret", "sender_address") if not getattr(g, k)]
    if missing:
        raise ConfigurationError(f"email.graph settings missing: {', '.join(missing)}")
    return GraphNotifier(g)
