"""HTTP client for the file server API.

This module provides:
- NasClient: HTTP client for the server's FileManageModel endpoints
- RemoteFile: File entry returned by the listing endpoint
- APIError: Raised for unexpected responses

The server exposes model events as ``POST /model/<Model>/<event>``.
JSON endpoints wrap their return value as ``{"result": ...}``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import IO, TYPE_CHECKING, Any

import httpx

from photomirror.core.types import PhotoMirrorError

if TYPE_CHECKING:
    from photomirror.core.config import ServerConfig, SyncSettings

logger = logging.getLogger(__name__)

FILE_EXIST_ENDPOINT = "/model/FileManageModel/fileExist"
UPLOAD_ENDPOINT = "/model/FileManageModel/uploadFile"
LIST_FILES_ENDPOINT = "/model/FileManageModel/listFiles"

# Upload bodies can be large on slow links
UPLOAD_TIMEOUT = 300.0


class APIError(PhotoMirrorError):
    """Unexpected response from the server."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


@dataclass
class RemoteFile:
    """File entry stored on the server."""

    name: str
    size: int
    create_time: int  # epoch milliseconds, as reported by the server
    path: str

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RemoteFile:
        """Create from API response dictionary."""
        return cls(
            name=data["name"],
            size=int(data.get("size", 0)),
            create_time=int(data.get("createTime", 0)),
            path=data.get("path", ""),
        )


class NasClient:
    """HTTP client for the file server.

    The client follows the server address held by ``settings``: when the
    address changes, the next request opens a connection to the new one.
    """

    def __init__(self, settings: SyncSettings) -> None:
        """Initialize the client.

        Args:
            settings: Settings holder providing the server address.
        """
        self._settings = settings
        self._server: ServerConfig | None = None
        self._client: httpx.Client | None = None

    def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None:
            self._client.close()
            self._client = None
            self._server = None

    def __enter__(self) -> NasClient:
        """Context manager entry."""
        return self

    def __exit__(self, *args: object) -> None:
        """Context manager exit."""
        self.close()

    def _http(self) -> httpx.Client:
        """Get an HTTP client bound to the current server address.

        Raises:
            ConfigurationMissing: If no server is configured.
        """
        server = self._settings.require_server()
        if self._client is None or server != self._server:
            if self._client is not None:
                logger.info("Server address changed, reconnecting to %s", server.base_url)
                self._client.close()
            self._client = httpx.Client(base_url=server.base_url, timeout=server.timeout)
            self._server = server
        return self._client

    # === Existence check ===

    def file_exists(self, md5: str, file_name: str, path: str) -> bool:
        """Ask the server whether content is already stored.

        Args:
            md5: Content digest.
            file_name: Remote file name.
            path: Remote directory.

        Returns:
            True if the server confirmed the content exists.

        Raises:
            APIError: If the server answered with a non-200 status.
            httpx.HTTPError: On transport failure.
        """
        response = self._http().post(
            FILE_EXIST_ENDPOINT,
            json={"md5": md5, "fileName": file_name, "path": path},
        )
        if response.status_code != 200:
            raise APIError(
                f"Existence check failed with HTTP {response.status_code}",
                response.status_code,
            )
        return "true" in response.text

    # === Upload ===

    def upload_file(
        self,
        *,
        path: str,
        name: str,
        create_time: int,
        md5: str,
        content: IO[bytes],
        content_type: str,
    ) -> httpx.Response:
        """Upload one file as multipart/form-data.

        The response is returned unchecked; callers classify the status.

        Args:
            path: Remote directory (e.g., "/alice/20240315").
            name: Remote file name, also used as the part's filename.
            create_time: Creation time in epoch seconds.
            md5: Content digest.
            content: Binary stream with the file payload.
            content_type: MIME type of the payload.

        Raises:
            httpx.HTTPError: On transport failure.
        """
        return self._http().post(
            UPLOAD_ENDPOINT,
            files={"file": (name, content, content_type)},
            data={
                "path": path,
                "name": name,
                "createTime": str(create_time),
                "md5": md5,
            },
            timeout=UPLOAD_TIMEOUT,
        )

    # === Listing ===

    def list_files(self, path: str = "", page: int = 1) -> list[RemoteFile]:
        """List files stored under a remote directory.

        Files are returned newest first, 20 per page.

        Args:
            path: Remote directory relative to the server root.
            page: 1-based page number.

        Returns:
            List of remote files (empty past the last page).
        """
        response = self._http().post(
            LIST_FILES_ENDPOINT,
            json={"path": path, "page": page},
        )
        if response.status_code != 200:
            raise APIError(
                f"Listing failed with HTTP {response.status_code}",
                response.status_code,
            )
        try:
            data = response.json()
        except ValueError as e:
            raise APIError(f"Invalid listing response: {e}") from e
        if data.get("code"):
            raise APIError(data.get("msg") or "Listing failed")
        return [RemoteFile.from_dict(item) for item in data.get("result") or []]
