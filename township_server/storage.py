from __future__ import annotations

import re
from collections.abc import Iterable
from pathlib import Path
from urllib.parse import quote, unquote

import httpx

from township_server.config import settings
from township_server.observability import increment, log_warning

PUBLIC_URL_PATTERN = re.compile(r"/storage/v1/object/public/(?P<bucket>[^/]+)/(?P<path>[^?#]+)")


class StorageError(Exception):
    pass


def storage_location(public_url: str | None) -> tuple[str, str] | None:
    """Map a public object URL back to ``(bucket, path)``; None if it is not one of ours."""
    if not public_url or not isinstance(public_url, str):
        return None
    match = PUBLIC_URL_PATTERN.search(public_url)
    if not match:
        return None
    return match.group("bucket"), unquote(match.group("path"))


class ObjectStore:
    def upload(
        self, bucket: str, path: str, data: bytes, *, content_type: str | None = None, upsert: bool = False
    ) -> str:
        raise NotImplementedError

    def public_url(self, bucket: str, path: str) -> str:
        raise NotImplementedError

    def remove(self, bucket: str, paths: list[str]) -> None:
        raise NotImplementedError


class LocalObjectStore(ObjectStore):
    """Buckets are directories under ``root``; served by the app's public storage route."""

    def __init__(self, root: Path | str | None = None, public_base_url: str | None = None):
        self.root = Path(root or settings.storage_root)
        self.public_base_url = (public_base_url or settings.public_base_url).rstrip("/")

    def object_path(self, bucket: str, path: str) -> Path:
        if not path or ".." in path.split("/") or path.startswith(("/", "\\")):
            raise StorageError(f"Invalid storage path: {path}")
        if not bucket or "/" in bucket or bucket in {".", ".."}:
            raise StorageError(f"Invalid bucket: {bucket}")
        bucket_dir = (self.root / bucket).resolve()
        resolved = (bucket_dir / path).resolve()
        if not resolved.is_relative_to(bucket_dir):
            raise StorageError(f"Invalid storage path: {path}")
        return resolved

    def upload(
        self, bucket: str, path: str, data: bytes, *, content_type: str | None = None, upsert: bool = False
    ) -> str:
        target = self.object_path(bucket, path)
        if target.exists() and not upsert:
            raise StorageError("The resource already exists")
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
        return path

    def public_url(self, bucket: str, path: str) -> str:
        return f"{self.public_base_url}/storage/v1/object/public/{bucket}/{quote(path)}"

    def remove(self, bucket: str, paths: list[str]) -> None:
        failed = []
        for path in paths:
            try:
                self.object_path(bucket, path).unlink(missing_ok=True)
            except (OSError, StorageError) as exc:
                failed.append({"path": path, "reason": str(exc)})
        if failed:
            raise StorageError(f"Failed to remove {len(failed)} object(s): {failed}")


class SupabaseObjectStore(ObjectStore):
    """Supabase Storage REST API with the service role key."""

    def __init__(
        self,
        url: str | None = None,
        service_key: str | None = None,
        client: httpx.Client | None = None,
    ):
        self.url = (url or settings.supabase_url).rstrip("/")
        key = service_key or settings.supabase_service_key
        self.base_api_url = f"{self.url}/storage/v1"
        self.client = client or httpx.Client(timeout=settings.http_timeout_s)
        self.headers = {"Authorization": f"Bearer {key}", "apikey": key}

    def upload(
        self, bucket: str, path: str, data: bytes, *, content_type: str | None = None, upsert: bool = False
    ) -> str:
        headers = {
            **self.headers,
            "Content-Type": content_type or "application/octet-stream",
            "x-upsert": "true" if upsert else "false",
        }
        try:
            response = self.client.post(
                f"{self.base_api_url}/object/{bucket}/{quote(path)}", headers=headers, content=data
            )
        except httpx.HTTPError as exc:
            raise StorageError(f"Storage upload error: {exc}") from exc
        if response.status_code >= 400:
            raise StorageError(f"Upload failed: {response.text}")
        return path

    def public_url(self, bucket: str, path: str) -> str:
        return f"{self.base_api_url}/object/public/{bucket}/{quote(path)}"

    def remove(self, bucket: str, paths: list[str]) -> None:
        try:
            response = self.client.request(
                "DELETE",
                f"{self.base_api_url}/object/{bucket}",
                headers=self.headers,
                json={"prefixes": paths},
            )
        except httpx.HTTPError as exc:
            raise StorageError(f"Storage remove error: {exc}") from exc
        if response.status_code >= 400:
            raise StorageError(f"Remove failed: {response.text}")


def build_store() -> ObjectStore:
    if settings.storage_backend == "supabase":
        return SupabaseObjectStore()
    return LocalObjectStore()


def remove_urls(store: ObjectStore, urls: Iterable[str | None], *, context: dict | None = None) -> int:
    """Best-effort removal of the objects behind ``urls``.

    Returns the number of storage paths removal was attempted for. Failures are
    logged and never raised.
    """
    by_bucket: dict[str, list[str]] = {}
    for url in urls:
        location = storage_location(url)
        if location is None:
            continue
        bucket, path = location
        by_bucket.setdefault(bucket, []).append(path)
    attempted = 0
    for bucket, paths in by_bucket.items():
        attempted += len(paths)
        try:
            store.remove(bucket, paths)
        except StorageError as exc:
            log_warning(
                "storage.remove_failed", bucket=bucket, paths=len(paths), error=str(exc), **(context or {})
            )
        else:
            increment("storage.objects.removed", len(paths))
    return attempted
