"""Object storage for uploaded and generated images (Cloudflare R2 via MinIO)."""

from __future__ import annotations

import io
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from urllib.parse import urlparse
from uuid import uuid4

from anyio import to_thread
from minio import Minio

from ..core.config import Settings, get_settings


class StorageConfigurationError(RuntimeError):
    """Raised when storage configuration is invalid."""


class ObjectStore(ABC):
    """Put bytes under a key and hand out a public URL for them."""

    @abstractmethod
    async def put(self, object_key: str, data: bytes, *, content_type: str) -> None:
        """Upload ``data`` under ``object_key``."""

    @abstractmethod
    def public_url(self, object_key: str) -> str:
        """Return the public URL that serves ``object_key``."""


def generate_object_key(kind: str, extension: str, *, now: datetime | None = None) -> str:
    """Return a date-partitioned key such as ``2024-05-01/generated/<time>-<id>.png``."""

    current = now or datetime.now(timezone.utc)
    date_part = current.strftime("%Y-%m-%d")
    time_part = current.strftime("%Y-%m-%dT%H-%M-%S")
    short_id = uuid4().hex[:8]
    return f"{date_part}/{kind}/{time_part}-{short_id}.{extension.lstrip('.')}"


class MinioStorageService(ObjectStore):
    """Lightweight wrapper around the MinIO client pointed at an R2 bucket."""

    def __init__(self, *, client: Minio, bucket: str, public_url_base: str) -> None:
        self._client = client
        self._bucket = bucket
        self._public_url_base = public_url_base.rstrip("/")

    @property
    def bucket(self) -> str:
        return self._bucket

    async def put(self, object_key: str, data: bytes, *, content_type: str) -> None:
        await to_thread.run_sync(self._put_sync, object_key, data, content_type)

    def _put_sync(self, object_key: str, data: bytes, content_type: str) -> None:
        self._client.put_object(
            self._bucket,
            object_key,
            io.BytesIO(data),
            length=len(data),
            content_type=content_type,
        )

    def public_url(self, object_key: str) -> str:
        return f"{self._public_url_base}/{object_key}"


def build_storage_service(settings: Settings | None = None) -> MinioStorageService:
    """Instantiate a storage service from application settings."""

    settings = settings or get_settings()
    required = {
        "R2_ACCESS_KEY_ID": settings.r2_access_key_id,
        "R2_SECRET_ACCESS_KEY": settings.r2_secret_access_key,
        "R2_BUCKET_NAME": settings.r2_bucket_name,
        "R2_PUBLIC_URL_BASE": settings.r2_public_url_base,
    }
    if not settings.r2_endpoint_url:
        required["R2_ACCOUNT_ID"] = settings.r2_account_id
    missing = [name for name, value in required.items() if not value]
    if missing:
        raise StorageConfigurationError(f"Missing R2 configuration: {', '.join(missing)}")

    endpoint_url = settings.r2_endpoint_url or f"https://{settings.r2_account_id}.r2.cloudflarestorage.com"
    parsed = urlparse(endpoint_url)
    client = Minio(
        parsed.netloc,
        access_key=settings.r2_access_key_id,
        secret_key=settings.r2_secret_access_key,
        secure=parsed.scheme == "https",
        region=settings.r2_region,
    )
    return MinioStorageService(
        client=client,
        bucket=str(settings.r2_bucket_name),
        public_url_base=str(settings.r2_public_url_base),
    )
