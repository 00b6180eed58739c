from __future__ import annotations

import base64
import json
import logging
from pathlib import Path
from types import SimpleNamespace
from typing import Any, Callable, Iterable, List

import pytest

from attachment_archiver.config import Settings
from attachment_archiver.context import ArchiverContext
from attachment_archiver.errors import TransportError
from attachment_archiver.ledger import DedupLedger
from attachment_archiver.message_source import MessageSource
from attachment_archiver.models import AttachmentRef, FolderRef, Message, TokenStatus, iter_leaves
from attachment_archiver.orchestrator import Orchestrator


class FakeResponse:
    def __init__(self, status_code: int = 200, payload: Any = None, text: str | None = None) -> None:
        self.status_code = status_code
        self._payload = payload
        self.text = text if text is not None else json.dumps(payload)
        self.reason = "Fake"
        self.headers: dict[str, str] = {"Content-Type": "application/json"}
        self.request = SimpleNamespace(url=None, headers={}, body=None)

    @property
    def content(self) -> bytes:
        return self.text.encode("utf-8")

    def json(self) -> Any:
        if self._payload is None:
            raise ValueError("no json body")
        return self._payload


class FakeSession:
    """Route requests by method + URL fragment; the longest fragment wins."""

    def __init__(self) -> None:
        self.routes: list[tuple[str, str, list]] = []
        self.calls: list[dict[str, Any]] = []

    def add(self, method: str, fragment: str, *responses: Any) -> None:
        self.routes.append((method.upper(), fragment, list(responses)))

    def request(self, method: str, url: str, **kwargs: Any) -> FakeResponse:
        self.calls.append({"method": method.upper(), "url": url, **kwargs})
        matches = [r for r in self.routes if r[0] == method.upper() and r[1] in url]
        if not matches:
            raise AssertionError(f"Unexpected request {method} {url}")
        _, _, responses = max(matches, key=lambda r: len(r[1]))
        response = responses.pop(0) if len(responses) > 1 else responses[0]
        if isinstance(response, Exception):
            raise response
        if callable(response):
            return response(url, **kwargs)
        return response

    def post(self, url: str, **kwargs: Any) -> FakeResponse:
        return self.request("POST", url, **kwargs)

    def close(self) -> None:
        pass

    def calls_to(self, fragment: str, method: str | None = None) -> list[dict[str, Any]]:
        return [
            call
            for call in self.calls
            if fragment in call["url"] and (method is None or call["method"] == method.upper())
        ]


class StaticTokens:
    def __init__(self, token: str = "test-token") -> None:
        self.token = token
        self.calls = 0

    def get_valid_credential(self) -> str:
        self.calls += 1
        return self.token

    def validate(self) -> TokenStatus:
        return TokenStatus(has_credential=True, is_expired=False, seconds_remaining=3600)


class FakeMailbox:
    """In-memory stand-in for MessageSource."""

    def __init__(self, labels: dict[str, str], messages: Iterable[Message] = ()) -> None:
        self.labels = labels
        self.messages = {message.id: message for message in messages}
        self.contents: dict[tuple[str, str], bytes] = {}
        self.downloads: list[tuple[str, str]] = []
        self.label_updates: list[tuple[str, list[str], list[str]]] = []
        self.failing_downloads: set[str] = set()

    def resolve_label_id(self, name: str) -> str | None:
        return self.labels.get(name)

    label_query = staticmethod(MessageSource.label_query)

    def search(self, query: str, max_results: int) -> List[Message]:
        pending = {label_id for name, label_id in self.labels.items() if f'"{name}"' in query}
        found = [m for m in self.messages.values() if m.label_ids & pending]
        return found[:max_results]

    def extract_attachments(self, message: Message) -> list[AttachmentRef]:
        return [
            AttachmentRef(
                message_id=message.id,
                attachment_id=leaf.attachment_id,
                filename=leaf.filename,
                mime_type=leaf.mime_type,
                size_bytes=leaf.size,
            )
            for leaf in iter_leaves(message.payload)
            if leaf.filename and leaf.attachment_id
        ]

    def download(self, message_id: str, attachment_id: str) -> bytes:
        self.downloads.append((message_id, attachment_id))
        if attachment_id in self.failing_downloads:
            raise TransportError("Gmail error 500: backend error", status_code=500)
        return self.contents.get((message_id, attachment_id), b"%PDF-1.4 fake")

    def update_labels(self, message_id: str, add=(), remove=()) -> None:
        add, remove = list(add), list(remove)
        self.label_updates.append((message_id, add, remove))
        message = self.messages[message_id]
        self.messages[message_id] = Message(
            id=message.id,
            thread_id=message.thread_id,
            label_ids=(message.label_ids - set(remove)) | set(add),
            headers=message.headers,
            payload=message.payload,
        )


class FakeDrive:
    """In-memory stand-in for ArchiveStore."""

    def __init__(self) -> None:
        self.folders: dict[tuple[str, str | None], FolderRef] = {}
        self.files: dict[tuple[str, str], bytes] = {}
        self.uploads: list[tuple[str, str]] = []
        self.folder_lookups = 0

    def reset_cache(self) -> None:
        pass

    def year_folder(self, year: str) -> FolderRef:
        self.folder_lookups += 1
        key = (year, "root")
        if key not in self.folders:
            self.folders[key] = FolderRef(id=f"folder-{year}", name=year, parent_id="root")
        return self.folders[key]

    def file_exists(self, name: str, parent_id: str) -> bool:
        return (parent_id, name) in self.files

    def upload(self, file_bytes, filename, mime_type, parent_id, description=None) -> str:
        self.files[(parent_id, filename)] = file_bytes
        self.uploads.append((parent_id, filename))
        return f"file-{len(self.uploads)}"


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        GOOGLE_CLIENT_ID="client-id.apps.googleusercontent.com",
        GOOGLE_CLIENT_SECRET="client-secret",
        GOOGLE_TOKEN_FILE=tmp_path / "tokens.json",
        LEDGER_DB=tmp_path / "ledger.db",
        GMAIL_PENDING_LABEL="claims/todo",
        GMAIL_PROCESSED_LABEL="claims/processed",
        MAX_MESSAGES_PER_RUN=10,
        MAX_FILE_SIZE_MB=1,
    )


@pytest.fixture
def fake_session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def context(settings: Settings, fake_session: FakeSession) -> ArchiverContext:
    return ArchiverContext(
        settings=settings, logger=logging.getLogger("tests"), session=fake_session
    )


@pytest.fixture
def ledger(settings: Settings) -> DedupLedger:
    return DedupLedger(settings.ledger_db)


@pytest.fixture
def make_raw_message() -> Callable[..., dict]:
    def _factory(
        message_id: str = "msg-1",
        sender: str | None = '"John Smith" <john.smith@example.com>',
        date: str | None = "Fri, 15 Mar 2024 10:00:00 +0000",
        attachments: Iterable[tuple[str, int]] = (("invoice.pdf", 2048),),
        label_ids: Iterable[str] = ("Label_todo",),
    ) -> dict:
        headers = [{"name": "Subject", "value": "Claim"}]
        if sender is not None:
            headers.append({"name": "From", "value": sender})
        if date is not None:
            headers.append({"name": "Date", "value": date})
        parts = [{"partId": "0", "mimeType": "text/plain", "filename": "", "body": {"size": 12, "data": "aGVsbG8"}}]
        for index, (filename, size) in enumerate(attachments, start=1):
            parts.append(
                {
                    "partId": str(index),
                    "mimeType": "application/pdf",
                    "filename": filename,
                    "body": {"attachmentId": f"{message_id}-att-{index}", "size": size},
                }
            )
        return {
            "id": message_id,
            "threadId": f"thread-{message_id}",
            "labelIds": list(label_ids),
            "payload": {"partId": "", "mimeType": "multipart/mixed", "headers": headers, "parts": parts},
        }

    return _factory


@pytest.fixture
def make_message(make_raw_message) -> Callable[..., Message]:
    def _factory(**kwargs: Any) -> Message:
        return MessageSource._to_message(make_raw_message(**kwargs))

    return _factory


@pytest.fixture
def mailbox() -> FakeMailbox:
    return FakeMailbox({"claims/todo": "Label_todo", "claims/processed": "Label_done"})


@pytest.fixture
def drive() -> FakeDrive:
    return FakeDrive()


@pytest.fixture
def orchestrator(context, mailbox, drive, ledger) -> Orchestrator:
    return Orchestrator(context, tokens=StaticTokens(), source=mailbox, archive=drive, ledger=ledger)


def b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode().rstrip("=")
