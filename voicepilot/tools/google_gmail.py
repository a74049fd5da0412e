from __future__ import annotations

import base64
from email.message import EmailMessage
from email.utils import formatdate, getaddresses
from html import unescape as html_unescape
import re

from .base import MailMessage, MailProvider, OutgoingMessage
from .google_api import api_request_json

_SUSPICIOUS_MARKERS = (
    "ignore previous instructions",
    "ignore all previous instructions",
    "system prompt",
    "reveal your prompt",
    "developer message",
    "api key",
    "password",
    "secret token",
)


class GoogleGmailClient(MailProvider):
    GMAIL_MESSAGES_URL = "https://gmail.googleapis.com/gmail/v1/users/me/messages"
    GMAIL_SEND_URL = "https://gmail.googleapis.com/gmail/v1/users/me/messages/send"

    def __init__(self, timeout_seconds: int = 8) -> None:
        self._timeout = max(1, int(timeout_seconds))

    def search_messages(
        self,
        access_token: str,
        query: str,
        max_results: int = 10,
    ) -> list[MailMessage]:
        limit = min(50, max(1, int(max_results)))
        params: dict[str, object] = {"maxResults": str(limit)}
        if query:
            params["q"] = query
        payload = self._request("GET", self.GMAIL_MESSAGES_URL, access_token, params=params)
        rows = payload.get("messages", [])
        if not isinstance(rows, list):
            return []

        out: list[MailMessage] = []
        for row in rows:
            if not isinstance(row, dict):
                continue
            message_id = str(row.get("id") or "").strip()
            if not message_id:
                continue
            details = self._request(
                "GET",
                f"{self.GMAIL_MESSAGES_URL}/{message_id}",
                access_token,
                params={
                    "format": "metadata",
                    "metadataHeaders": ["From", "To", "Subject", "Date"],
                },
            )
            headers = _headers_to_map(details)
            labels = details.get("labelIds")
            snippet, _ = sanitize_email_text(html_unescape(str(details.get("snippet") or "")))
            out.append(
                MailMessage(
                    message_id=message_id,
                    thread_id=str(details.get("threadId") or row.get("threadId") or message_id),
                    sender=headers.get("from") or "Unknown sender",
                    subject=headers.get("subject") or "(no subject)",
                    snippet=snippet,
                    recipients=_split_addresses(headers.get("to") or ""),
                    received_at=headers.get("date") or None,
                    unread=isinstance(labels, list) and "UNREAD" in labels,
                )
            )
            if len(out) >= limit:
                break
        return out

    def send_message(self, access_token: str, message: OutgoingMessage) -> dict[str, object]:
        payload = self._request(
            "POST",
            self.GMAIL_SEND_URL,
            access_token,
            body={"raw": build_rfc822_raw(message)},
        )
        return {
            "id": str(payload.get("id") or ""),
            "threadId": str(payload.get("threadId") or ""),
            "recipients": list(message.recipients),
            "subject": message.subject,
        }

    def _request(
        self,
        method: str,
        url: str,
        access_token: str,
        params: dict[str, object] | None = None,
        body: dict[str, object] | None = None,
    ) -> dict:
        return api_request_json(
            url=url,
            method=method,
            access_token=access_token,
            timeout=self._timeout,
            service_name="Gmail",
            params=params,
            body=body,
        )


def build_rfc822_raw(message: OutgoingMessage) -> str:
    msg = EmailMessage()
    msg["To"] = ", ".join(message.recipients)
    if message.cc:
        msg["Cc"] = ", ".join(message.cc)
    msg["Subject"] = (message.subject or "").strip() or "(no subject)"
    msg["Date"] = formatdate(localtime=True)
    msg.set_content(message.body or "")
    raw = msg.as_bytes()
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def sanitize_email_text(text: str) -> tuple[str, bool]:
    """Drop lines that look like prompt injection; returns ``(text, flagged)``."""
    if not text.strip():
        return ("", False)
    flagged = False
    safe_lines: list[str] = []
    for line in text.splitlines():
        lowered = line.strip().lower()
        if any(marker in lowered for marker in _SUSPICIOUS_MARKERS):
            flagged = True
            continue
        safe_lines.append(line)
    cleaned = re.sub(r"[ \t]+", " ", "\n".join(safe_lines)).strip()
    if len(cleaned) > 500:
        cleaned = cleaned[:500].rstrip() + "..."
    return (cleaned, flagged)


def _headers_to_map(message_payload: dict[str, object]) -> dict[str, str]:
    payload = message_payload.get("payload")
    if not isinstance(payload, dict):
        return {}
    raw_headers = payload.get("headers", [])
    if not isinstance(raw_headers, list):
        return {}
    out: dict[str, str] = {}
    for row in raw_headers:
        if not isinstance(row, dict):
            continue
        key = str(row.get("name") or "").strip().lower()
        value = str(row.get("value") or "").strip()
        if key:
            out[key] = value
    return out


def _split_addresses(raw: str) -> tuple[str, ...]:
    return tuple(address.lower() for _, address in getaddresses([raw]) if address)
