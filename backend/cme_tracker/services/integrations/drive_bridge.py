"""
File-storage bridge client.

Certificate images live on Google Drive behind an Apps Script web app.
The script takes a JSON envelope posted as text/plain and answers
{success, id?, url?, error?}. Its shared token comes from configuration.
"""
import base64
import json
import logging
import os
import re
from dataclasses import dataclass
from typing import Optional

import httpx

logger = logging.getLogger(__name__)

DRIVE_BRIDGE_URL = os.getenv("DRIVE_BRIDGE_URL", "")
DRIVE_BRIDGE_TOKEN = os.getenv("DRIVE_BRIDGE_TOKEN", "")

_FILE_ID_PATTERN = re.compile(r"(?:file/d/|uc\?id=|open\?id=|d/)([a-zA-Z0-9_-]{28,})")


class DriveBridgeError(Exception):
    """Upload/delete through the bridge failed or the bridge is not configured."""
    pass


@dataclass
class UploadedFile:
    id: str
    url: str

    @property
    def display_url(self) -> str:
        return transform_drive_url(self.id)


def extract_file_id_from_url(url: Optional[str]) -> Optional[str]:
    """
    Pull the Drive file id out of any of the URL shapes the app has stored.
    A bare id (no slash, longer than 25 chars) is returned unchanged.
    """
    if not url:
        return None
    match = _FILE_ID_PATTERN.search(url)
    if match:
        return match.group(1)
    if "/" not in url and len(url) > 25:
        return url
    return None


def transform_drive_url(url_or_id: Optional[str]) -> str:
    """Direct image URL for a Drive file, usable in <img> tags."""
    if not url_or_id:
        return ""
    file_id = extract_file_id_from_url(url_or_id)
    if not file_id:
        return url_or_id
    return f"https://lh3.googleusercontent.com/d/{file_id}"


class DriveBridgeClient:
    """Async client for the Apps Script bridge."""

    def __init__(
        self,
        url: str = DRIVE_BRIDGE_URL,
        token: str = DRIVE_BRIDGE_TOKEN,
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url
        self.token = token
        self.timeout = timeout
        self.transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.url and self.token)

    async def _post(self, payload: dict) -> dict:
        if not self.configured:
            raise DriveBridgeError("File storage bridge is not configured")

        # text/plain keeps the request a "simple" one for the Apps Script endpoint
        async with httpx.AsyncClient(
            timeout=self.timeout, transport=self.transport, follow_redirects=True
        ) as client:
            try:
                response = await client.post(
                    self.url,
                    headers={"Content-Type": "text/plain"},
                    content=json.dumps({"token": self.token, **payload}),
                )
                response.raise_for_status()
                result = response.json()
            except httpx.HTTPStatusError as e:
                raise DriveBridgeError(f"Bridge returned HTTP {e.response.status_code}") from e
            except httpx.HTTPError as e:
                raise DriveBridgeError(f"Bridge request failed: {e}") from e
            except ValueError as e:
                raise DriveBridgeError("Bridge returned a non-JSON response") from e

        if not result.get("success"):
            raise DriveBridgeError(result.get("error") or "Unknown error from upload script.")
        return result

    async def upload(self, data: bytes, mime_type: str, username: str) -> UploadedFile:
        """Upload raw image bytes into the user's folder."""
        try:
            result = await self._post({
                "action": "upload",
                "username": username,
                "data": base64.b64encode(data).decode("ascii"),
                "mimeType": mime_type,
            })
        except DriveBridgeError as e:
            logger.error(f"Drive upload failed for {username}: {e}")
            raise

        file_id = result.get("id") or extract_file_id_from_url(result.get("url"))
        if not file_id:
            raise DriveBridgeError("Bridge response has no file id")
        logger.info(f"Uploaded image {file_id} for {username}")
        return UploadedFile(id=file_id, url=result.get("url") or transform_drive_url(file_id))

    async def delete(self, file_id: str) -> None:
        try:
            await self._post({"action": "delete", "fileId": file_id})
        except DriveBridgeError as e:
            logger.error(f"Drive delete failed for {file_id}: {e}")
            raise
        logger.info(f"Deleted image {file_id}")

    async def delete_by_url(self, url: Optional[str]) -> bool:
        """
        Best-effort removal of the image behind a stored URL.
        Returns False when there is nothing to delete or the bridge failed.
        """
        file_id = extract_file_id_from_url(url)
        if not file_id:
            return False
        try:
            await self.delete(file_id)
        except DriveBridgeError:
            return False
        return True


def get_drive_bridge() -> DriveBridgeClient:
    """FastAPI dependency."""
    return DriveBridgeClient()
