"""Email adapters (Gmail, Outlook, IMAP/SMTP)."""

from conduit.providers.email.base import EmailProvider
from conduit.providers.email.gmail import GmailProvider
from conduit.providers.email.imap import ImapProvider
from conduit.providers.email.outlook import OutlookProvider

__all__ = ["EmailProvider", "GmailProvider", "ImapProvider", "OutlookProvider"]
