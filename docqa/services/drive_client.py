"""
Google Drive Client
Lists, inspects and downloads Drive files over the REST v3 API with a bearer token.
"""
from typing import Any, Dict, List, Optional

import httpx
import structlog
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from docqa.config import get_settings
from docqa.exceptions import DriveAuthError, DriveError
from docqa.models.schemas import DriveFile

logger = structlog.get_logger()

FILE_FIELDS = "id, name, mimeType, size, modifiedTime, webViewLink"
LIST_FIELDS = f"nextPageToken, files({FILE_FIELDS})"

# Drive caps a single list request at 1000 files
MAX_PAGE_SIZE = 1000

# Google Workspace files have no binary content; export them as text
EXPORT_MIME_TYPES = {
    "application/vnd.google-apps.document": "text/plain",
    "application/vnd.google-apps.presentation": "text/plain",
    "application/vnd.google-apps.spreadsheet": "text/csv",
}


def build_list_query(folder_id: Optional[str] = None, name_query: Optional[str] = None) -> str:
    clauses = ["trashed = false"]
    if folder_id:
        clauses.insert(0, f"'{_escape(folder_id)}' in parents")
    if name_query:
        clauses.insert(0, f"name contains '{_escape(name_query)}'")
    return " and ".join(clauses)


def _escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace("'", "\\'")


class DriveClient:
    """Thin async client for the Drive files API."""

    def __init__(self, access_token: str, http_client: Optional[httpx.AsyncClient] = None):
        if not access_token:
            raise DriveAuthError()
        self.settings = get_settings()
        self.base_url = self.settings.drive_api_base.rstrip("/")
        self._owns_client = http_client is None
        self.client = http_client or httpx.AsyncClient(timeout=self.settings.request_timeout)
        self.headers = {"Authorization": f"Bearer {access_token}"}

    async def __aenter__(self) -> "DriveClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type(httpx.TransportError),
        reraise=True,
    )
    async def _send(self, path: str, params: Dict[str, Any]) -> httpx.Response:
        return await self.client.get(f"{self.base_url}{path}", params=params, headers=self.headers)

    async def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> httpx.Response:
        """GET a Drive endpoint, mapping failures onto Drive errors."""
        try:
            response = await self._send(path, params or {})
        except httpx.TransportError as e:
            logger.error("Drive request failed", path=path, error=str(e))
            raise DriveError(details={"path": path}) from e

        if response.status_code == 401:
            raise DriveAuthError("Google Drive access token is invalid or expired")
        if response.status_code >= 400:
            logger.error(
                "Drive returned error status",
                path=path,
                status=response.status_code,
                body=response.text[:300],
            )
            raise DriveError(details={"path": path, "status": response.status_code})
        return response

    async def list_files(
        self,
        folder_id: Optional[str] = None,
        page_size: int = MAX_PAGE_SIZE,
        query: Optional[str] = None,
    ) -> List[DriveFile]:
        """
        List non-trashed files, newest first.

        Args:
            folder_id: Restrict to children of this folder
            page_size: Maximum number of files to return
            query: Optional filename substring

        Returns:
            Up to ``page_size`` DriveFile entries
        """
        files: List[DriveFile] = []
        page_token: Optional[str] = None

        while len(files) < page_size:
            params: Dict[str, Any] = {
                "q": build_list_query(folder_id, query),
                "pageSize": min(page_size - len(files), MAX_PAGE_SIZE),
                "fields": LIST_FIELDS,
                "orderBy": "modifiedTime desc",
            }
            if page_token:
                params["pageToken"] = page_token

            data = (await self._get("/files", params)).json()
            files.extend(DriveFile.model_validate(item) for item in data.get("files", []))

            page_token = data.get("nextPageToken")
            if not page_token:
                break

        logger.info("Listed Drive files", count=len(files), folder_id=folder_id)
        return files[:page_size]

    async def get_file_metadata(self, file_id: str) -> DriveFile:
        response = await self._get(f"/files/{file_id}", {"fields": FILE_FIELDS})
        return DriveFile.model_validate(response.json())

    async def get_file_content(self, file_id: str, mime_type: str) -> bytes:
        """Download file bytes, exporting Google Workspace files as text."""
        export_type = EXPORT_MIME_TYPES.get(mime_type)
        if export_type:
            logger.info("Exporting Google Workspace file", file_id=file_id, export_type=export_type)
            response = await self._get(f"/files/{file_id}/export", {"mimeType": export_type})
        else:
            response = await self._get(f"/files/{file_id}", {"alt": "media"})
        return response.content
