"""Typed containers shared across the pipeline."""

from __future__ import annotations

import json
import traceback
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Iterator, Optional, Union

from .errors import sanitize_error_message
from .utils import isoformat_utc, utcnow


@dataclass(frozen=True)
class TokenStatus:
    has_credential: bool
    is_expired: bool
    seconds_remaining: int = 0


@dataclass(frozen=True)
class LeafPart:
    """A MIME part without children; may reference an attachment body."""

    part_id: str
    mime_type: str
    filename: Optional[str] = None
    attachment_id: Optional[str] = None
    size: int = 0


@dataclass(frozen=True)
class ContainerPart:
    """A multipart container; never an attachment itself."""

    part_id: str
    mime_type: str
    children: tuple["Part", ...] = ()


Part = Union[LeafPart, ContainerPart]


def iter_leaves(part: Part) -> Iterator[LeafPart]:
    """Depth-first walk over the leaves of a part tree, in document order."""
    if isinstance(part, ContainerPart):
        for child in part.children:
            yield from iter_leaves(child)
    else:
        yield part


@dataclass(frozen=True)
class Message:
    """Read-only snapshot of a Gmail message."""

    id: str
    thread_id: str
    label_ids: frozenset[str]
    headers: tuple[tuple[str, str], ...]
    payload: Part

    def header(self, name: str) -> Optional[str]:
        wanted = name.lower()
        for header_name, value in self.headers:
            if header_name.lower() == wanted:
                return value
        return None


@dataclass(frozen=True)
class AttachmentRef:
    """Metadata for a file attachment."""

    message_id: str
    attachment_id: str
    filename: str
    mime_type: str
    size_bytes: int


@dataclass(frozen=True)
class FolderRef:
    id: str
    name: str
    parent_id: Optional[str] = None


@dataclass
class UploadRecord:
    """A file that made it into the archive."""

    email_id: str
    filename: str
    archive_file_id: str
    size: int
    upload_time: str = field(default_factory=lambda: isoformat_utc(utcnow()))


@dataclass
class ErrorLogEntry:
    timestamp: str
    error: str
    context: str
    service: str
    operation: str
    message_id: Optional[str] = None
    stack: Optional[str] = None

    @classmethod
    def from_exception(
        cls,
        exc: BaseException,
        *,
        service: str,
        operation: str,
        message_id: str | None = None,
    ) -> "ErrorLogEntry":
        context = {"service": service, "operation": operation}
        if message_id:
            context["message_id"] = message_id
        stack = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
        return cls(
            timestamp=isoformat_utc(utcnow()),
            error=sanitize_error_message(str(exc) or type(exc).__name__),
            context=json.dumps(context),
            service=service,
            operation=operation,
            message_id=message_id,
            stack=sanitize_error_message(stack) if exc.__traceback__ else None,
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class MessageResult:
    """Outcome of one message inside a batch."""

    message_id: str
    success: bool = False
    files_uploaded: int = 0
    skipped: int = 0
    label_updated: bool = False
    error: Optional[str] = None
    duration_ms: int = 0


@dataclass
class RunReport:
    """Per-invocation summary."""

    start_time: datetime
    end_time: Optional[datetime] = None
    total_messages: int = 0
    successful: int = 0
    failed: int = 0
    files_uploaded: int = 0
    total_duration_ms: int = 0
    errors: list[dict[str, str]] = field(default_factory=list)
    fatal_error: Optional[str] = None

    @property
    def status(self) -> str:
        if self.fatal_error:
            return "failed"
        if self.failed == 0:
            return "success"
        if self.successful == 0:
            return "failed"
        return "partial"

    def add(self, result: MessageResult) -> None:
        self.files_uploaded += result.files_uploaded
        if result.success:
            self.successful += 1
        else:
            self.failed += 1
            self.errors.append(
                {"message_id": result.message_id, "error": result.error or "Unknown error"}
            )

    def finish(self, end_time: datetime | None = None) -> None:
        self.end_time = end_time or utcnow()
        self.total_duration_ms = int((self.end_time - self.start_time).total_seconds() * 1000)

    def to_dict(self) -> dict[str, Any]:
        """The camelCase shape read by monitoring collaborators."""
        return {
            "startTime": isoformat_utc(self.start_time),
            "endTime": isoformat_utc(self.end_time) if self.end_time else None,
            "totalEmails": self.total_messages,
            "successfulEmails": self.successful,
            "failedEmails": self.failed,
            "totalFilesUploaded": self.files_uploaded,
            "totalProcessingTime": self.total_duration_ms,
            "errors": [
                {"emailId": item["message_id"], "error": item["error"]} for item in self.errors
            ],
            "status": self.status,
            "fatalError": self.fatal_error,
        }
