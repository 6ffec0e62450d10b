"""Address parsing, MIME building and body extraction shared by email adapters."""

from __future__ import annotations

import base64
import binascii
import logging
from email.message import EmailMessage as MimeMessage
from email.message import Message
from email.utils import formataddr, getaddresses, make_msgid, parseaddr
from typing import Any

from conduit.providers.models import EmailAddress, SendEmailOptions

logger = logging.getLogger(__name__)

MAX_MIME_DEPTH = 20


def parse_email_address(value: str | None) -> EmailAddress | None:
    """Parse ``"Name" <addr>`` / ``Name <addr>`` / ``addr`` into an :class:`EmailAddress`.

    Returns ``None`` for empty input.  Addresses are lower-cased.
    """
    if not value or not value.strip():
        return None
    name, address = parseaddr(value.strip())
    address = address.strip() or value.strip()
    return EmailAddress(email=address, name=name.strip() or None)


def parse_address_list(value: str | None) -> list[EmailAddress]:
    """Parse a comma-separated header (quoted commas inside names are respected)."""
    if not value or not value.strip():
        return []
    addresses: list[EmailAddress] = []
    for name, address in getaddresses([value]):
        if not address.strip():
            continue
        addresses.append(EmailAddress(email=address, name=name.strip() or None))
    return addresses


def format_email_address(address: EmailAddress | str, name: str | None = None) -> str:
    """Render ``"Name" <addr>`` when a name is present, otherwise the bare address."""
    if isinstance(address, EmailAddress):
        email, name = address.email, address.name
    else:
        email = address
    if name:
        return formataddr((name, email))
    return email


def build_mime_message(
    sender: str,
    options: SendEmailOptions,
    *,
    sender_name: str | None = None,
    include_bcc: bool = True,
) -> MimeMessage:
    """Build an RFC 5322 message, ``multipart/alternative`` when both bodies are set.

    ``include_bcc`` keeps the ``Bcc`` header (Gmail raw send strips it
    server-side); SMTP callers pass ``False`` and add Bcc recipients to the
    envelope instead.
    """
    message = MimeMessage()
    message["From"] = format_email_address(sender, sender_name)
    message["To"] = ", ".join(options.to)
    if options.cc:
        message["Cc"] = ", ".join(options.cc)
    if options.bcc and include_bcc:
        message["Bcc"] = ", ".join(options.bcc)
    message["Subject"] = options.subject
    if options.reply_to:
        message["Reply-To"] = options.reply_to
    if options.in_reply_to:
        message["In-Reply-To"] = options.in_reply_to
        message["References"] = options.in_reply_to
    domain = sender.rpartition("@")[2] or None
    message["Message-ID"] = make_msgid(domain=domain)

    text = options.body_text
    html = options.body_html
    if text is None and html is None:
        text = ""
    if text is not None:
        message.set_content(text, subtype="plain", charset="utf-8")
        if html is not None:
            message.add_alternative(html, subtype="html", charset="utf-8")
    else:
        message.set_content(html, subtype="html", charset="utf-8")
    return message


def _decode_base64url(data: str) -> str:
    padded = data + "=" * (-len(data) % 4)
    try:
        return base64.urlsafe_b64decode(padded).decode("utf-8", errors="replace")
    except (binascii.Error, ValueError):
        logger.warning("Skipping undecodable base64url body part")
        return ""


def extract_gmail_bodies(payload: dict[str, Any], depth: int = 0) -> tuple[str | None, str | None]:
    """Walk a Gmail ``format=full`` payload tree and return ``(text, html)``.

    The first non-attachment part of each type wins.
    """
    if depth > MAX_MIME_DEPTH:
        logger.warning("Maximum recursion depth reached in email parsing")
        return None, None

    text: str | None = None
    html: str | None = None

    mime_type = str(payload.get("mimeType") or "").lower()
    body = payload.get("body") if isinstance(payload.get("body"), dict) else {}
    data = body.get("data")
    if isinstance(data, str) and data and not payload.get("filename"):
        if mime_type == "text/plain":
            text = _decode_base64url(data)
        elif mime_type == "text/html":
            html = _decode_base64url(data)

    for part in payload.get("parts") or []:
        if not isinstance(part, dict):
            continue
        part_text, part_html = extract_gmail_bodies(part, depth + 1)
        if text is None:
            text = part_text
        if html is None:
            html = part_html
        if text is not None and html is not None:
            break

    return text, html


def extract_message_bodies(message: Message) -> tuple[str | None, str | None]:
    """Return ``(text, html)`` from a parsed ``email.message.Message`` tree."""
    text: str | None = None
    html: str | None = None
    for depth, part in enumerate(message.walk()):
        if depth > MAX_MIME_DEPTH * 10:
            logger.warning("Too many MIME parts; truncating body extraction")
            break
        if part.is_multipart() or part.get_content_disposition() == "attachment":
            continue
        content_type = part.get_content_type()
        if content_type not in ("text/plain", "text/html"):
            continue
        raw = part.get_payload(decode=True)
        if raw is None:
            continue
        charset = part.get_content_charset() or "utf-8"
        try:
            decoded = raw.decode(charset, errors="replace")
        except LookupError:
            decoded = raw.decode("utf-8", errors="replace")
        if content_type == "text/plain" and text is None:
            text = decoded
        elif content_type == "text/html" and html is None:
            html = decoded
    return text, html
