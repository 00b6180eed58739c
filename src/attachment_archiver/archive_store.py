"""Google Drive uploader organised by year folders."""

from __future__ import annotations

import json
from typing import Any, Dict, Optional

from .context import ArchiverContext
from .google_api import GoogleApiClient
from .models import FolderRef
from .token_provider import TokenProvider

FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"
DEFAULT_MIME_TYPE = "application/octet-stream"


def quote_drive_literal(value: str) -> str:
    """Escape a string for use inside a Drive ``q`` expression."""
    escaped = value.replace("\\", "\\\\").replace("'", "\\'")
    return f"'{escaped}'"


class ArchiveStore(GoogleApiClient):
    """Find-or-create folders and upload documents to Drive."""

    API_NAME = "Drive"
    DRIVE_BASE = "https://www.googleapis.com/drive/v3"
    UPLOAD_BASE = "https://www.googleapis.com/upload/drive/v3"

    def __init__(self, context: ArchiverContext, tokens: TokenProvider) -> None:
        super().__init__(context, tokens, "drive")
        self._folders: Dict[tuple[str, Optional[str]], FolderRef] = {}

    def reset_cache(self) -> None:
        """Forget folders resolved during a previous run."""
        self._folders.clear()

    def find_or_create_folder(self, name: str, parent_id: str | None = None) -> FolderRef:
        cache_key = (name, parent_id)
        if cache_key in self._folders:
            return self._folders[cache_key]

        query = [
            f"mimeType = '{FOLDER_MIME_TYPE}'",
            f"name = {quote_drive_literal(name)}",
            "trashed = false",
        ]
        if parent_id:
            query.append(f"{quote_drive_literal(parent_id)} in parents")
        files = self._list_files(" and ".join(query), "files(id,name,parents)")

        if files:
            found = files[0]
            folder = FolderRef(id=found["id"], name=found["name"], parent_id=_first(found.get("parents")))
            self.logger.debug("Found existing folder %s (%s)", folder.name, folder.id)
        else:
            folder = self._create_folder(name, parent_id)
        self._folders[cache_key] = folder
        return folder

    def year_folder(self, year: str) -> FolderRef:
        """Resolve ``[root/]<year>``; a configured root folder id is used as-is."""
        root_id = self.settings.drive_root_folder_id
        if not root_id:
            root_id = self.find_or_create_folder(self.settings.drive_root_folder_name).id
        return self.find_or_create_folder(year, root_id)

    def file_exists(self, name: str, parent_id: str) -> bool:
        query = " and ".join(
            [
                f"name = {quote_drive_literal(name)}",
                f"{quote_drive_literal(parent_id)} in parents",
                "trashed = false",
            ]
        )
        return bool(self._list_files(query, "files(id)"))

    def upload(
        self,
        file_bytes: bytes,
        filename: str,
        mime_type: str | None,
        parent_id: str,
        description: str | None = None,
    ) -> str:
        """Single-shot multipart upload; returns the Drive file id."""
        metadata: Dict[str, Any] = {
            "name": filename,
            "mimeType": mime_type or DEFAULT_MIME_TYPE,
            "parents": [parent_id],
        }
        if description:
            metadata["description"] = description

        # Drive reads the first part as file metadata and the second as media
        files = {
            "metadata": ("metadata", json.dumps(metadata), "application/json; charset=UTF-8"),
            "file": (filename, file_bytes, metadata["mimeType"]),
        }

        self.logger.info("Uploading '%s' (%d bytes) to Drive folder %s", filename, len(file_bytes), parent_id)
        response = self._request(
            "POST",
            f"{self.UPLOAD_BASE}/files",
            params={"uploadType": "multipart", "fields": "id,name,size"},
            files=files,
        )
        file_id = response.json()["id"]
        self.logger.info("Uploaded '%s' as %s", filename, file_id)
        return file_id

    def _create_folder(self, name: str, parent_id: str | None) -> FolderRef:
        metadata: Dict[str, Any] = {"name": name, "mimeType": FOLDER_MIME_TYPE}
        if parent_id:
            metadata["parents"] = [parent_id]
        response = self._request(
            "POST", f"{self.DRIVE_BASE}/files", params={"fields": "id,name,parents"}, json=metadata
        )
        created = response.json()
        folder = FolderRef(
            id=created["id"], name=created.get("name", name), parent_id=_first(created.get("parents")) or parent_id
        )
        self.logger.info("Created folder %s (%s)", folder.name, folder.id)
        return folder

    def _list_files(self, query: str, fields: str) -> list[dict]:
        payload = self._get_json(
            f"{self.DRIVE_BASE}/files", params={"q": query, "fields": fields, "spaces": "drive"}
        )
        return payload.get("files", [])


def _first(items: list[str] | None) -> str | None:
    return items[0] if items else None
