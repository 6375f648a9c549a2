"""Storage service for evidence blobs in Supabase Storage."""

from typing import Any, Dict, Iterable

import httpx

from veridicus.core.exceptions import StorageError
from veridicus.utils.logging import get_logger

LOGGER = get_logger(__name__)


class StorageService:
    """Upload, download and sign evidence objects through the Storage REST API."""

    def __init__(self, supabase_url: str, service_role_key: str, bucket: str, timeout: int = 60):
        self.url = supabase_url.rstrip("/")
        self.bucket = bucket
        self.timeout = timeout
        self.base_api_url = f"{self.url}/storage/v1"
        self.headers = {
            "Authorization": f"Bearer {service_role_key}",
            "apikey": service_role_key,
        }

    async def upload_bytes(
        self,
        path: str,
        content: bytes,
        content_type: str = "application/octet-stream",
    ) -> str:
        """Upload ``content`` under ``path`` in the evidence bucket.

        Returns:
            The storage path of the new object.

        Raises:
            StorageError: If the upload fails.
        """
        upload_url = f"{self.base_api_url}/object/{self.bucket}/{path}"
        try:
            async with httpx.AsyncClient() as client:
                response = await client.post(
                    upload_url,
                    headers={**self.headers, "Content-Type": content_type, "x-upsert": "false"},
                    content=content,
                    timeout=self.timeout,
                )
        except httpx.HTTPError as e:
            LOGGER.error(f"Error uploading file to Supabase: {str(e)}", exc_info=True)
            raise StorageError(f"Storage upload error: {str(e)}", original_error=e)

        if response.status_code != 200:
            LOGGER.error(
                f"Failed to upload file to Supabase: {response.text}",
                extra={"bucket": self.bucket, "path": path, "status_code": response.status_code},
            )
            raise StorageError(f"Upload failed: {response.text}")

        LOGGER.info("Uploaded evidence object", extra={"path": path, "size": len(content)})
        return path

    async def download(self, path: str) -> bytes:
        """Download an object's bytes.

        Raises:
            StorageError: If the download fails.
        """
        url = f"{self.base_api_url}/object/authenticated/{self.bucket}/{path}"
        try:
            async with httpx.AsyncClient() as client:
                response = await client.get(url, headers=self.headers, timeout=self.timeout)
        except httpx.HTTPError as e:
            LOGGER.error(f"Error downloading file from Supabase: {str(e)}", exc_info=True)
            raise StorageError(f"Failed to download file: {str(e)}", original_error=e)

        if response.status_code != 200:
            LOGGER.error(
                f"Failed to download file from Supabase: {response.text}",
                extra={"bucket": self.bucket, "path": path, "status_code": response.status_code},
            )
            raise StorageError(f"Failed to download file: {response.text}")
        return response.content

    async def get_signed_url(self, path: str, expires_in: int = 3600) -> Dict[str, Any]:
        """Generate a time-limited download URL.

        Raises:
            StorageError: If URL generation fails.
        """
        url = f"{self.base_api_url}/object/sign/{self.bucket}/{path}"
        try:
            async with httpx.AsyncClient() as client:
                response = await client.post(
                    url,
                    headers=self.headers,
                    json={"expiresIn": expires_in},
                    timeout=self.timeout,
                )
        except httpx.HTTPError as e:
            LOGGER.error(f"Error generating signed URL: {str(e)}", exc_info=True)
            raise StorageError(f"Signed URL error: {str(e)}", original_error=e)

        if response.status_code != 200:
            LOGGER.error(
                f"Failed to generate signed URL: {response.text}",
                extra={"bucket": self.bucket, "path": path, "status_code": response.status_code},
            )
            raise StorageError(f"Signed URL generation failed: {response.text}")

        signed_path = response.json().get("signedURL")
        if not signed_path:
            raise StorageError("Supabase response did not contain signedURL")

        # Supabase returns a path relative to /storage/v1
        if signed_path.startswith("/object/"):
            signed_url = f"{self.base_api_url}{signed_path}"
        elif signed_path.startswith("/"):
            signed_url = f"{self.url}{signed_path}"
        else:
            signed_url = signed_path

        return {"signed_url": signed_url, "storage_path": path}

    async def remove(self, paths: Iterable[str]) -> None:
        """Delete objects; failures are logged, not raised."""
        prefixes = list(paths)
        if not prefixes:
            return
        url = f"{self.base_api_url}/object/{self.bucket}"
        try:
            async with httpx.AsyncClient() as client:
                response = await client.request(
                    "DELETE",
                    url,
                    headers=self.headers,
                    json={"prefixes": prefixes},
                    timeout=self.timeout,
                )
            if response.status_code != 200:
                LOGGER.warning(
                    f"Failed to remove storage objects: {response.text}",
                    extra={"count": len(prefixes), "status_code": response.status_code},
                )
        except httpx.HTTPError as e:
            LOGGER.warning(f"Error removing storage objects: {e}", extra={"count": len(prefixes)})
