"""IMAP/SMTP adapter.

Uses IMAP for mailbox sync and SMTP for sending.  The account's
``access_token`` is used as the login password (app password or provider
token).  Blocking ``imaplib``/``smtplib`` calls run through
``asyncio.to_thread``; each operation opens and closes its own connection.
"""

from __future__ import annotations

import asyncio
import email as email_lib
import imaplib
import logging
import re
import smtplib
import time
from datetime import UTC, datetime
from email import policy
from email.message import Message
from email.utils import parsedate_to_datetime

from conduit.providers.email.base import DEFAULT_MESSAGE_LIMIT, EmailProvider
from conduit.providers.email.mime import (
    build_mime_message,
    extract_message_bodies,
    parse_address_list,
    parse_email_address,
)
from conduit.providers.errors import (
    ConnectionFailedError,
    ProviderConfigError,
    ProviderTransportError,
)
from conduit.providers.models import (
    EmailAccountConfig,
    EmailFolder,
    EmailMessage,
    EmailSyncResult,
    SendEmailOptions,
)
from conduit.providers.oauth import ProviderSettings

logger = logging.getLogger(__name__)

SMTP_SSL_PORT = 465
_LIST_RESPONSE = re.compile(rb'\((?P<flags>[^)]*)\) (?P<delimiter>"[^"]*"|NIL) (?P<name>.+)')
_STATUS_COUNT = re.compile(rb"(MESSAGES|UNSEEN) (\d+)")
_UID = re.compile(rb"UID (\d+)")


def _flags_as_labels(flags: tuple[bytes, ...]) -> list[str]:
    return [flag.decode("utf-8", errors="replace") for flag in flags]


def _header_date(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None


def _thread_id(message: Message) -> str | None:
    references = str(message.get("References") or "").split()
    if references:
        return references[0]
    in_reply_to = str(message.get("In-Reply-To") or "").strip()
    if in_reply_to:
        return in_reply_to
    message_id = str(message.get("Message-ID") or "").strip()
    return message_id or None


def imap_message_to_email_message(
    uid: str,
    raw: bytes,
    *,
    flags: tuple[bytes, ...] = (),
    internal_date: datetime | None = None,
) -> EmailMessage:
    """Normalize one fetched RFC 822 message."""
    parsed = email_lib.message_from_bytes(raw, policy=policy.default)
    body_text, body_html = extract_message_bodies(parsed)
    in_reply_to = str(parsed.get("In-Reply-To") or "").strip() or None
    sent_at = _header_date(str(parsed.get("Date") or "")) or internal_date

    return EmailMessage(
        id=uid,
        thread_id=_thread_id(parsed),
        sender=parse_email_address(str(parsed.get("From") or "")),
        to=parse_address_list(str(parsed.get("To") or "")),
        cc=parse_address_list(str(parsed.get("Cc") or "")),
        bcc=parse_address_list(str(parsed.get("Bcc") or "")),
        subject=str(parsed["Subject"]) if parsed.get("Subject") is not None else None,
        body_text=body_text,
        body_html=body_html,
        labels=_flags_as_labels(flags),
        is_read=b"\\Seen" in flags,
        is_starred=b"\\Flagged" in flags,
        sent_at=sent_at,
        received_at=internal_date or sent_at,
        in_reply_to=in_reply_to,
    )


def _internal_date(meta: bytes) -> datetime | None:
    parsed = imaplib.Internaldate2tuple(meta)
    if parsed is None:
        return None
    return datetime.fromtimestamp(time.mktime(parsed), tz=UTC)


class ImapProvider(EmailProvider):
    """Generic IMAP/SMTP mailbox."""

    def __init__(
        self,
        config: EmailAccountConfig,
        settings: ProviderSettings,
        mailbox: str = "INBOX",
    ) -> None:
        self._config = config
        self._mailbox = mailbox

    @property
    def name(self) -> str:
        return "imap"

    def _require_hosts(self) -> None:
        if not self._config.imap_host or not self._config.smtp_host:
            raise ProviderConfigError("IMAP/SMTP host not configured")

    def _open_imap(self) -> imaplib.IMAP4:
        try:
            if self._config.use_tls:
                conn = imaplib.IMAP4_SSL(self._config.imap_host, self._config.imap_port)
            else:
                conn = imaplib.IMAP4(self._config.imap_host, self._config.imap_port)
        except OSError as exc:
            raise ProviderTransportError(
                f"IMAP connection to {self._config.imap_host} failed: {exc}"
            ) from exc
        try:
            conn.login(self._config.email, self._config.access_token)
        except imaplib.IMAP4.error as exc:
            _safe_logout(conn)
            raise ConnectionFailedError(f"IMAP login rejected: {exc}") from exc
        return conn

    # ------------------------------------------------------------------
    # Blocking helpers (run via asyncio.to_thread)
    # ------------------------------------------------------------------

    def _imap_probe(self) -> bool:
        try:
            conn = self._open_imap()
        except ConnectionFailedError as exc:
            logger.info("IMAP rejected credentials for %s: %s", self._config.email, exc)
            return False
        _safe_logout(conn)
        return True

    def _imap_sync(self, last_uid: int, limit: int) -> EmailSyncResult:
        conn = self._open_imap()
        try:
            conn.select(self._mailbox, readonly=True)
            _status, data = conn.uid("SEARCH", None, f"UID {last_uid + 1}:*")
            candidates = sorted(
                int(raw) for raw in (data[0].split() if data and data[0] else [])
            )
            # "n:*" always matches the highest UID, even when it is <= n.
            pending = [uid for uid in candidates if uid > last_uid]
            batch = pending[:limit]

            messages: list[EmailMessage] = []
            for uid in batch:
                _status, msg_data = conn.uid("FETCH", str(uid), "(UID FLAGS INTERNALDATE RFC822)")
                parsed = _parse_fetch_response(msg_data)
                if parsed is None:
                    logger.warning("IMAP UID %d vanished before fetch", uid)
                    continue
                meta, raw = parsed
                try:
                    messages.append(
                        imap_message_to_email_message(
                            str(uid),
                            raw,
                            flags=imaplib.ParseFlags(meta),
                            internal_date=_internal_date(meta),
                        )
                    )
                except ValueError as exc:
                    logger.warning("Skipping malformed IMAP message %d: %s", uid, exc)
        finally:
            _safe_logout(conn)

        next_uid = batch[-1] if batch else last_uid
        return EmailSyncResult(
            messages=messages,
            cursor=str(next_uid) if next_uid else None,
            has_more=len(pending) > len(batch),
        )

    def _imap_list_folders(self) -> list[EmailFolder]:
        conn = self._open_imap()
        try:
            _status, data = conn.list()
            folders: list[EmailFolder] = []
            for line in data or []:
                if not isinstance(line, bytes):
                    continue
                match = _LIST_RESPONSE.match(line)
                if match is None:
                    continue
                if b"\\Noselect" in match.group("flags"):
                    continue
                raw_name = match.group("name").strip()
                name = raw_name.strip(b'"').decode("utf-8", errors="replace")
                unread: int | None = None
                total: int | None = None
                _status, status_data = conn.status(
                    raw_name.decode("utf-8", errors="replace"), "(MESSAGES UNSEEN)"
                )
                for key, value in _STATUS_COUNT.findall(status_data[0] or b""):
                    if key == b"UNSEEN":
                        unread = int(value)
                    else:
                        total = int(value)
                folders.append(
                    EmailFolder(id=name, name=name, unread_count=unread, total_count=total)
                )
            return folders
        finally:
            _safe_logout(conn)

    def _smtp_send(self, options: SendEmailOptions) -> str:
        message = build_mime_message(
            self._config.email,
            options,
            sender_name=self._config.display_name,
            include_bcc=False,
        )
        recipients = [
            address.email
            for raw in (*options.to, *options.cc, *options.bcc)
            if (address := parse_email_address(raw)) is not None
        ]

        try:
            if self._config.smtp_port == SMTP_SSL_PORT:
                server = smtplib.SMTP_SSL(self._config.smtp_host, self._config.smtp_port)
            else:
                server = smtplib.SMTP(self._config.smtp_host, self._config.smtp_port)
                if self._config.use_tls:
                    server.starttls()
        except OSError as exc:
            raise ProviderTransportError(
                f"SMTP connection to {self._config.smtp_host} failed: {exc}"
            ) from exc

        try:
            server.login(self._config.email, self._config.access_token)
            server.send_message(message, from_addr=self._config.email, to_addrs=recipients)
        finally:
            server.quit()

        message_id = str(message["Message-ID"])
        logger.info("Email sent via SMTP to %s: %s", ", ".join(recipients), options.subject)
        return message_id

    # ------------------------------------------------------------------
    # Contract
    # ------------------------------------------------------------------

    async def connect(self) -> bool:
        self._require_hosts()
        return await asyncio.to_thread(self._imap_probe)

    async def disconnect(self) -> None:
        """Connections are closed after each operation."""

    async def sync_messages(
        self,
        cursor: str | None = None,
        limit: int = DEFAULT_MESSAGE_LIMIT,
    ) -> EmailSyncResult:
        if limit < 1:
            raise ValueError("limit must be at least 1")
        self._require_hosts()
        try:
            last_uid = int(cursor) if cursor else 0
        except ValueError as exc:
            raise ValueError(f"Invalid IMAP cursor: {cursor!r}") from exc
        try:
            return await asyncio.to_thread(self._imap_sync, last_uid, limit)
        except imaplib.IMAP4.error as exc:
            raise ProviderTransportError(f"IMAP sync failed: {exc}") from exc

    async def send_message(self, options: SendEmailOptions) -> str:
        self._require_hosts()
        try:
            return await asyncio.to_thread(self._smtp_send, options)
        except smtplib.SMTPAuthenticationError as exc:
            raise ConnectionFailedError(f"SMTP login rejected: {exc}") from exc
        except smtplib.SMTPException as exc:
            raise ProviderTransportError(f"SMTP send failed: {exc}") from exc

    async def list_folders(self) -> list[EmailFolder]:
        self._require_hosts()
        try:
            return await asyncio.to_thread(self._imap_list_folders)
        except imaplib.IMAP4.error as exc:
            raise ProviderTransportError(f"IMAP folder listing failed: {exc}") from exc


def _parse_fetch_response(msg_data: list | None) -> tuple[bytes, bytes] | None:
    """Return ``(metadata, raw_message)`` from an ``imaplib`` FETCH response."""
    for item in msg_data or []:
        if isinstance(item, tuple) and len(item) >= 2 and _UID.search(item[0]):
            return item[0], item[1]
    return None


def _safe_logout(conn: imaplib.IMAP4) -> None:
    try:
        conn.logout()
    except (imaplib.IMAP4.error, OSError) as exc:
        logger.debug("IMAP logout failed: %s", exc)
