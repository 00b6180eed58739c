"""Gmail helper focused on labelled messages and their attachments."""

from __future__ import annotations

from typing import Any, Iterable, List

from .context import ArchiverContext
from .errors import ArchiverError
from .google_api import GoogleApiClient
from .models import AttachmentRef, ContainerPart, LeafPart, Message, Part, iter_leaves
from .token_provider import TokenProvider
from .utils import decode_base64url

DEFAULT_MIME_TYPE = "application/octet-stream"


class MessageSource(GoogleApiClient):
    """Thin wrapper over the Gmail REST API."""

    API_NAME = "Gmail"
    GMAIL_BASE = "https://gmail.googleapis.com/gmail/v1/users/me"
    PAGE_SIZE = 100

    def __init__(self, context: ArchiverContext, tokens: TokenProvider) -> None:
        super().__init__(context, tokens, "gmail")

    def resolve_label_id(self, name: str) -> str | None:
        """Exact, case-sensitive lookup; ``None`` when the label does not exist."""
        payload = self._get_json(f"{self.GMAIL_BASE}/labels")
        for label in payload.get("labels", []):
            if label.get("name") == name:
                return label.get("id")
        self.logger.debug("Label %r not among %d labels", name, len(payload.get("labels", [])))
        return None

    @staticmethod
    def label_query(name: str) -> str:
        return f'label:"{name}"'

    def search(self, query: str, max_results: int) -> list[Message]:
        """Run a search, then fetch every hit in full (up to ``max_results``)."""
        url = f"{self.GMAIL_BASE}/messages"
        params: dict[str, Any] = {"q": query, "includeSpamTrash": "true"}
        message_ids: List[str] = []

        while len(message_ids) < max_results:
            params["maxResults"] = min(self.PAGE_SIZE, max_results - len(message_ids))
            self.logger.debug("Listing Gmail messages for %s", query)
            payload = self._get_json(url, params=dict(params))
            message_ids.extend(item["id"] for item in payload.get("messages", []))
            page_token = payload.get("nextPageToken")
            if not page_token:
                break
            params["pageToken"] = page_token

        if not message_ids:
            self.logger.info("No messages found for query: %s", query)
            return []

        messages = []
        for message_id in message_ids[:max_results]:
            message = self._fetch_message(message_id)
            if message is not None:
                messages.append(message)
        return messages

    def extract_attachments(self, message: Message) -> list[AttachmentRef]:
        """Every leaf part carrying both a filename and an attachment body."""
        return [
            AttachmentRef(
                message_id=message.id,
                attachment_id=leaf.attachment_id,
                filename=leaf.filename,
                mime_type=leaf.mime_type or DEFAULT_MIME_TYPE,
                size_bytes=leaf.size,
            )
            for leaf in iter_leaves(message.payload)
            if leaf.filename and leaf.attachment_id
        ]

    def download(self, message_id: str, attachment_id: str) -> bytes:
        url = f"{self.GMAIL_BASE}/messages/{message_id}/attachments/{attachment_id}"
        payload = self._get_json(url)
        return decode_base64url(payload.get("data", ""))

    def update_labels(
        self, message_id: str, add: Iterable[str] = (), remove: Iterable[str] = ()
    ) -> None:
        body = {"addLabelIds": list(add), "removeLabelIds": list(remove)}
        self._request("POST", f"{self.GMAIL_BASE}/messages/{message_id}/modify", json=body)
        self.logger.info("Updated labels for message %s: %s", message_id, body)

    def _fetch_message(self, message_id: str) -> Message | None:
        try:
            raw = self._get_json(
                f"{self.GMAIL_BASE}/messages/{message_id}", params={"format": "full"}
            )
            return self._to_message(raw)
        except ArchiverError as exc:
            if exc.fatal:
                raise
            self.logger.error("Dropping message %s: %s", message_id, exc)
        except (KeyError, TypeError, ValueError) as exc:
            self.logger.error("Dropping message %s: invalid message structure (%s)", message_id, exc)
        return None

    @staticmethod
    def _to_message(raw: dict) -> Message:
        payload = raw["payload"]
        headers = tuple((h["name"], h.get("value", "")) for h in payload["headers"])
        return Message(
            id=raw["id"],
            thread_id=raw.get("threadId", ""),
            label_ids=frozenset(raw.get("labelIds") or []),
            headers=headers,
            payload=MessageSource._to_part(payload),
        )

    @staticmethod
    def _to_part(raw: dict) -> Part:
        part_id = raw.get("partId", "")
        mime_type = raw.get("mimeType", "")
        if "parts" in raw:
            return ContainerPart(
                part_id=part_id,
                mime_type=mime_type,
                children=tuple(MessageSource._to_part(child) for child in raw["parts"] or []),
            )
        body = raw.get("body") or {}
        return LeafPart(
            part_id=part_id,
            mime_type=mime_type,
            filename=raw.get("filename") or None,
            attachment_id=body.get("attachmentId"),
            size=int(body.get("size") or 0),
        )
