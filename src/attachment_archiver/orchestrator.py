"""Batch controller: labelled Gmail messages in, archived Drive files out.

One call to :meth:`Orchestrator.run_batch` processes at most
``max_messages_per_run`` messages, strictly one after another:

1. resolve the pending and processed label ids (missing either aborts the batch),
2. search for messages carrying the pending label,
3. per message: extract attachments, parse ``From``/``Date``, resolve the year
   folder, then per attachment skip oversized files and duplicates (archive
   first, then ledger) and download/upload/record the rest,
4. swap pending → processed once a message has at least one upload and no
   failed attachment,
5. persist the run report, whatever the outcome.

A failing message is recorded in the report and the error log and the loop
moves on. Only fatal errors (authentication) stop the batch early.

Two overlapping invocations can both pass the duplicate checks for the same
file before either uploads it; at-most-once archiving is not guaranteed under
concurrent runs.
"""

from __future__ import annotations

import time
from dataclasses import asdict, dataclass
from typing import Any, Optional

from .archive_store import ArchiveStore
from .context import ArchiverContext
from .errors import ArchiverError, StorageError, ValidationError, sanitize_error_message
from .ledger import DedupLedger
from .message_source import MessageSource
from .models import AttachmentRef, ErrorLogEntry, FolderRef, Message, MessageResult, RunReport, UploadRecord
from .naming import canonical_filename, ledger_key, parse_email_date, parse_sender
from .token_provider import TokenProvider
from .utils import isoformat_utc, utcnow


@dataclass(frozen=True)
class LabelIds:
    pending: str
    processed: str


class Orchestrator:
    """Drive one bounded batch end to end."""

    SERVICE = "orchestrator"

    def __init__(
        self,
        context: ArchiverContext,
        tokens: TokenProvider,
        source: MessageSource,
        archive: ArchiveStore,
        ledger: DedupLedger,
    ) -> None:
        self.settings = context.settings
        self.logger = context.child_logger("orchestrator")
        self.tokens = tokens
        self.source = source
        self.archive = archive
        self.ledger = ledger

    @classmethod
    def from_context(cls, context: ArchiverContext) -> "Orchestrator":
        tokens = TokenProvider(context)
        return cls(
            context,
            tokens=tokens,
            source=MessageSource(context, tokens),
            archive=ArchiveStore(context, tokens),
            ledger=DedupLedger(context.settings.ledger_db),
        )

    def run_batch(self) -> RunReport:
        report = RunReport(start_time=utcnow())
        self.archive.reset_cache()
        try:
            self.tokens.get_valid_credential()
            labels = self._resolve_labels()
            query = self.source.label_query(self.settings.gmail_pending_label)
            self.logger.info("Searching for messages with query: %s", query)
            messages = self.source.search(query, self.settings.max_messages_per_run)
            report.total_messages = len(messages)
            self.logger.info("Found %d messages to process", len(messages))

            for message in messages:
                report.add(self.process_message(message, labels))
        except Exception as exc:
            report.fatal_error = sanitize_error_message(str(exc) or type(exc).__name__)
            self.logger.error("Batch aborted: %s", report.fatal_error)
            self._log_error(exc, operation="run_batch")
            raise
        finally:
            report.finish()
            self._save_report(report)
        return report

    def process_message(self, message: Message, labels: LabelIds) -> MessageResult:
        """Run one message through the pipeline; only fatal errors escape."""
        started = time.monotonic()
        result = MessageResult(message_id=message.id)
        try:
            self._process_message(message, labels, result)
        except ArchiverError as exc:
            if exc.fatal:
                raise
            self._fail(result, exc)
        except Exception as exc:
            self._fail(result, exc)
        result.duration_ms = int((time.monotonic() - started) * 1000)
        return result

    def get_status(self) -> dict[str, Any]:
        last_report = self.ledger.last_run_report()
        return {
            "lastRun": last_report["startTime"] if last_report else None,
            "lastReport": last_report,
            "recentErrorCount": self.ledger.error_count(),
            "ledgerHealthy": self.ledger.is_healthy(),
            "token": asdict(self.tokens.validate()),
        }

    def bootstrap_authorization(self, code: str, redirect_uri: str) -> None:
        self.tokens.exchange_authorization_code(code, redirect_uri)

    def get_authorization_url(self, redirect_uri: str, state: str | None = None) -> str:
        return self.tokens.authorization_url(redirect_uri, state)

    def _resolve_labels(self) -> LabelIds:
        pending_name = self.settings.gmail_pending_label
        processed_name = self.settings.gmail_processed_label
        pending = self.source.resolve_label_id(pending_name)
        if not pending:
            raise ValidationError(f"Required label '{pending_name}' not found")
        processed = self.source.resolve_label_id(processed_name)
        if not processed:
            raise ValidationError(f"Processed label '{processed_name}' not found")
        return LabelIds(pending=pending, processed=processed)

    def _process_message(self, message: Message, labels: LabelIds, result: MessageResult) -> None:
        attachments = self.source.extract_attachments(message)
        if not attachments:
            self.logger.info("Message %s has no attachments, skipping", message.id)
            result.success = True
            return

        from_header = message.header("From")
        date_header = message.header("Date")
        if not from_header or not date_header:
            raise ValidationError("Missing required email headers (From or Date)")

        sender = parse_sender(from_header)
        parsed_date = parse_email_date(date_header)
        if parsed_date is None:
            raise ValidationError(f"Unable to parse email date: {date_header}")

        folder = self.archive.year_folder(parsed_date.year)
        failures: list[str] = []
        for attachment in attachments:
            try:
                outcome = self._process_attachment(
                    message, attachment, sender.last_name, parsed_date.year, parsed_date.month, folder
                )
            except ArchiverError as exc:
                if exc.fatal:
                    raise
                failures.append(self._attachment_failed(message, attachment, exc))
                continue
            except Exception as exc:
                failures.append(self._attachment_failed(message, attachment, exc))
                continue
            if outcome:
                result.files_uploaded += 1
            else:
                result.skipped += 1

        if failures:
            raise ArchiverError(
                f"{len(failures)} of {len(attachments)} attachments failed: " + "; ".join(failures)
            )

        if result.files_uploaded > 0:
            self.logger.info("Updating labels for message %s", message.id)
            self.source.update_labels(message.id, add=[labels.processed], remove=[labels.pending])
            result.label_updated = True

        result.success = True
        self.logger.info(
            "Processed message %s: %d uploaded, %d skipped",
            message.id,
            result.files_uploaded,
            result.skipped,
        )

    def _process_attachment(
        self,
        message: Message,
        attachment: AttachmentRef,
        last_name: Optional[str],
        year: str,
        month: str,
        folder: FolderRef,
    ) -> bool:
        """Return True when the attachment was uploaded, False when skipped."""
        if attachment.size_bytes > self.settings.max_attachment_size:
            self.logger.warning(
                "Skipping large attachment: %s (%d bytes)", attachment.filename, attachment.size_bytes
            )
            return False

        filename = canonical_filename(month, last_name, attachment.filename)
        key = ledger_key(year, filename)
        if self._is_duplicate(filename, key, folder):
            self.logger.info("File already archived: %s, skipping", key)
            return False

        self.logger.debug("Downloading attachment %s from message %s", attachment.filename, message.id)
        content = self.source.download(message.id, attachment.attachment_id)
        file_id = self.archive.upload(
            content,
            filename,
            attachment.mime_type,
            folder.id,
            description=f"Uploaded from email {message.id} on {isoformat_utc(utcnow())}",
        )

        upload = UploadRecord(
            email_id=message.id,
            filename=filename,
            archive_file_id=file_id,
            size=len(content),
        )
        try:
            self.ledger.record(key, upload)
        except StorageError as exc:
            self.logger.error("Uploaded %s but could not record it in the ledger: %s", key, exc)
        return True

    def _is_duplicate(self, filename: str, key: str, folder: FolderRef) -> bool:
        if self.archive.file_exists(filename, folder.id):
            return True
        try:
            return self.ledger.is_recorded(key)
        except StorageError as exc:
            self.logger.warning("Ledger lookup for %s failed, treating as new: %s", key, exc)
            return False

    def _attachment_failed(self, message: Message, attachment: AttachmentRef, exc: Exception) -> str:
        self.logger.error(
            "Failed to process attachment %s of message %s: %s", attachment.filename, message.id, exc
        )
        return f"{attachment.filename}: {exc}"

    def _fail(self, result: MessageResult, exc: Exception) -> None:
        result.success = False
        result.error = sanitize_error_message(str(exc) or type(exc).__name__)
        self.logger.error("Failed to process message %s: %s", result.message_id, result.error)
        self._log_error(exc, operation="process_message", message_id=result.message_id)

    def _log_error(self, exc: Exception, operation: str, message_id: str | None = None) -> None:
        entry = ErrorLogEntry.from_exception(
            exc, service=self.SERVICE, operation=operation, message_id=message_id
        )
        try:
            self.ledger.append_error(entry)
        except StorageError as storage_exc:
            self.logger.error("Could not append to error log: %s", storage_exc)

    def _save_report(self, report: RunReport) -> None:
        try:
            self.ledger.save_run_report(report)
        except StorageError as exc:
            self.logger.error("Could not persist run report: %s", exc)
            return
        self.logger.info(
            "Run complete (%s): %d/%d messages successful, %d files uploaded",
            report.status,
            report.successful,
            report.total_messages,
            report.files_uploaded,
        )
