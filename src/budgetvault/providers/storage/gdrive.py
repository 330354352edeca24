"""Google Drive object storage."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath

from budgetvault.core.models import RemoteBackupDescriptor
from budgetvault.providers.storage.base import ObjectNotFound, StorageError, StorageInfo

log = logging.getLogger(__name__)

_FOLDER_MIME = "application/vnd.google-apps.folder"


def _escape(name: str) -> str:
    return name.replace("\\", "\\\\").replace("'", "\\'")


class GDriveObjectStorage:
    """Map slash-separated object paths onto nested Drive folders.

    ``user/42/backup.zip`` becomes folder ``user`` > folder ``42`` > file
    ``backup.zip`` under the configured root folder.
    """

    def __init__(self, config: dict | None = None) -> None:
        config = config or {}
        self._folder_id = config.get("folder_id", "")
        self._credential = config.get("credential", "keyring")
        self._service = None

    @property
    def name(self) -> str:
        return "gdrive"

    @property
    def info(self) -> StorageInfo:
        return StorageInfo(
            display_name="Google Drive",
            version="1.0.0",
            requires_auth=True,
        )

    def _get_service(self):
        """Lazy-initialize the Google Drive API service."""
        if self._service is not None:
            return self._service
        try:
            import keyring
            from google.oauth2.credentials import Credentials
            from googleapiclient.discovery import build
        except ImportError as e:
            raise StorageError(
                f"Google Drive SDK not installed: {e}. "
                "Install with: pip install budgetvault[gdrive]"
            ) from e

        token_json = keyring.get_password("budgetvault", "gdrive_token")
        if not token_json:
            raise StorageError(
                "No Google Drive token in keyring. "
                "Store one under service 'budgetvault', key 'gdrive_token'."
            )

        creds = Credentials.from_authorized_user_info(json.loads(token_json))
        self._service = build("drive", "v3", credentials=creds)
        return self._service

    def _execute(self, request, what: str):
        """Run a Drive request, translating HTTP errors."""
        try:
            return request.execute()
        except Exception as e:
            status = getattr(getattr(e, "resp", None), "status", None)
            if status == 404:
                raise ObjectNotFound(f"{what}: not found") from e
            raise StorageError(f"{what}: {e}") from e

    def _find(self, service, parent_id: str, name: str, folder: bool) -> dict | None:
        mime = f"mimeType='{_FOLDER_MIME}'" if folder else f"mimeType!='{_FOLDER_MIME}'"
        query = (
            f"name='{_escape(name)}' and '{parent_id}' in parents "
            f"and {mime} and trashed=false"
        )
        result = self._execute(
            service.files().list(q=query, fields="files(id,name,size,modifiedTime)"),
            f"Lookup of {name}",
        )
        files = result.get("files", [])
        return files[0] if files else None

    def _ensure_folder(self, service, parent_id: str, name: str) -> str:
        """Find or create a folder in Google Drive. Returns folder ID."""
        existing = self._find(service, parent_id, name, folder=True)
        if existing:
            return existing["id"]

        metadata = {
            "name": name,
            "mimeType": _FOLDER_MIME,
            "parents": [parent_id],
        }
        folder = self._execute(
            service.files().create(body=metadata, fields="id"),
            f"Creating folder {name}",
        )
        return folder["id"]

    def _locate(self, service, remote_path: str, create: bool) -> tuple[str | None, str]:
        """Resolve the parent folder of remote_path. Returns (parent_id, file_name)."""
        parts = PurePosixPath(remote_path).parts
        if not parts:
            raise StorageError(f"Invalid remote path: {remote_path!r}")
        parent_id = self._folder_id
        for part in parts[:-1]:
            if create:
                parent_id = self._ensure_folder(service, parent_id, part)
            else:
                folder = self._find(service, parent_id, part, folder=True)
                if folder is None:
                    return None, parts[-1]
                parent_id = folder["id"]
        return parent_id, parts[-1]

    def upload(self, local_path: Path, remote_path: str) -> None:
        service = self._get_service()
        from googleapiclient.http import MediaFileUpload

        parent_id, file_name = self._locate(service, remote_path, create=True)
        media = MediaFileUpload(str(local_path), resumable=True)
        existing = self._find(service, parent_id, file_name, folder=False)
        if existing:
            request = service.files().update(
                fileId=existing["id"], media_body=media, fields="id",
            )
        else:
            metadata = {"name": file_name, "parents": [parent_id]}
            request = service.files().create(body=metadata, media_body=media, fields="id")
        self._execute(request, f"Upload of {remote_path}")
        log.info("Uploaded %s to Google Drive", remote_path)

    def download(self, remote_path: str, local_path: Path) -> None:
        service = self._get_service()
        parent_id, file_name = self._locate(service, remote_path, create=False)
        item = self._find(service, parent_id, file_name, folder=False) if parent_id else None
        if item is None:
            raise ObjectNotFound(f"No object at {remote_path}")

        content = self._execute(
            service.files().get_media(fileId=item["id"]),
            f"Download of {remote_path}",
        )
        try:
            local_path.write_bytes(content)
        except OSError as e:
            raise StorageError(f"Writing download of {remote_path} failed: {e}") from e

    def delete(self, remote_path: str) -> bool:
        service = self._get_service()
        parent_id, file_name = self._locate(service, remote_path, create=False)
        item = self._find(service, parent_id, file_name, folder=False) if parent_id else None
        if item is None:
            return False
        try:
            self._execute(service.files().delete(fileId=item["id"]), f"Delete of {remote_path}")
        except ObjectNotFound:
            return False
        return True

    def stat(self, remote_path: str) -> RemoteBackupDescriptor | None:
        service = self._get_service()
        parent_id, file_name = self._locate(service, remote_path, create=False)
        item = self._find(service, parent_id, file_name, folder=False) if parent_id else None
        if item is None:
            return None

        modified = item.get("modifiedTime")
        try:
            last_modified = datetime.fromisoformat(modified.replace("Z", "+00:00"))
        except (AttributeError, ValueError):
            last_modified = datetime.fromtimestamp(0, tz=timezone.utc)
        return RemoteBackupDescriptor(
            path=remote_path,
            last_modified=last_modified,
            size=int(item.get("size", 0)),
        )
