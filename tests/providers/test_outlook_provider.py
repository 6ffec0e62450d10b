"""Tests for the Outlook (Graph mail) adapter."""

from __future__ import annotations

import json
import uuid

import httpx
import pytest

from conduit.providers.email.outlook import OutlookProvider, outlook_message_to_email_message
from conduit.providers.models import EmailAccountConfig, SendEmailOptions

pytestmark = pytest.mark.unit

ACCOUNT = EmailAccountConfig(
    provider="outlook", email="me@contoso.com", access_token="tok", refresh_token="rtok"
)

GRAPH_MESSAGE = {
    "id": "AAMkAD",
    "conversationId": "conv-1",
    "from": {"emailAddress": {"address": "Ada@Contoso.com", "name": "Ada"}},
    "toRecipients": [{"emailAddress": {"address": "me@contoso.com"}}],
    "subject": "Quarterly numbers",
    "body": {"contentType": "html", "content": "<b>Q1</b>"},
    "receivedDateTime": "2026-01-05T09:00:00Z",
    "sentDateTime": "2026-01-05T08:59:00Z",
    "isRead": False,
    "flag": {"flagStatus": "flagged"},
    "categories": ["Finance"],
    "internetMessageHeaders": [{"name": "In-Reply-To", "value": "<orig@contoso.com>"}],
}


class TestOutlookMapping:
    def test_message(self):
        message = outlook_message_to_email_message(GRAPH_MESSAGE)
        assert message.sender.email == "ada@contoso.com"
        assert message.body_html == "<b>Q1</b>"
        assert message.body_text is None
        assert message.labels == ["Finance", "FLAGGED"]
        assert message.is_starred is True
        assert message.is_read is False
        assert message.in_reply_to == "<orig@contoso.com>"
        assert message.thread_id == "conv-1"


class TestOutlookProvider:
    async def test_sync_pages_by_next_link(self, provider_settings, mock_http):
        next_link = "https://graph.microsoft.com/v1.0/me/messages?$skip=1"
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            if len(requests) == 1:
                return httpx.Response(
                    200, json={"value": [GRAPH_MESSAGE], "@odata.nextLink": next_link}
                )
            return httpx.Response(200, json={"value": []})

        provider = OutlookProvider(ACCOUNT, provider_settings, mock_http(handler))
        first = await provider.sync_messages(limit=1)
        second = await provider.sync_messages(cursor=first.cursor)

        assert [m.id for m in first.messages] == ["AAMkAD"]
        assert first.cursor == next_link
        assert second.has_more is False
        assert requests[0].url.path == "/v1.0/me/messages"
        assert requests[0].url.params["$top"] == "1"
        assert requests[1].url.params["$skip"] == "1"

    async def test_send_mail_returns_local_id(self, provider_settings, mock_http):
        bodies: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/v1.0/me/sendMail"
            bodies.append(json.loads(request.content))
            return httpx.Response(202)

        provider = OutlookProvider(ACCOUNT, provider_settings, mock_http(handler))
        message_id = await provider.send_message(
            SendEmailOptions(
                to=["Ada <ada@contoso.com>"],
                cc=["bob@contoso.com"],
                subject="Hi",
                body_text="Hello",
            )
        )

        uuid.UUID(message_id)
        message = bodies[0]["message"]
        assert bodies[0]["saveToSentItems"] is True
        assert message["body"] == {"contentType": "text", "content": "Hello"}
        assert message["toRecipients"] == [
            {"emailAddress": {"address": "ada@contoso.com", "name": "Ada"}}
        ]
        assert message["ccRecipients"] == [{"emailAddress": {"address": "bob@contoso.com"}}]

    async def test_list_folders(self, provider_settings, mock_http):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                json={
                    "value": [
                        {
                            "id": "inbox-id",
                            "displayName": "Inbox",
                            "unreadItemCount": 2,
                            "totalItemCount": 10,
                        }
                    ]
                },
            )

        provider = OutlookProvider(ACCOUNT, provider_settings, mock_http(handler))
        folders = await provider.list_folders()
        assert [(f.id, f.name, f.unread_count, f.total_count) for f in folders] == [
            ("inbox-id", "Inbox", 2, 10)
        ]
