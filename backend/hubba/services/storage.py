from __future__ import annotations
from dataclasses import dataclass
from functools import lru_cache
from minio import Minio
from minio.error import S3Error
from hubba.config import settings


def _parse_endpoint(ep: str) -> tuple[str, bool]:
    # Return (host:port, secure)
    secure = ep.startswith("https://")
    host = ep.replace("http://", "").replace("https://", "")
    return host, secure


@dataclass(frozen=True)
class BlobInfo:
    path: str
    size: int
    content_type: str | None


class BlobStore:
    """Upload bucket access used by the validation pipeline."""

    def __init__(self, client: Minio, bucket: str):
        self._client = client
        self._bucket = bucket

    def stat(self, path: str) -> BlobInfo | None:
        try:
            obj = self._client.stat_object(self._bucket, path)
        except S3Error as e:
            if e.code in ("NoSuchKey", "NoSuchObject"):
                return None
            raise
        return BlobInfo(path=path, size=int(obj.size or 0), content_type=obj.content_type)

    def download(self, path: str, destination: str) -> None:
        self._client.fget_object(self._bucket, path, destination)

    def delete(self, path: str) -> None:
        self._client.remove_object(self._bucket, path)


@lru_cache(maxsize=1)
def get_blob_store() -> BlobStore:
    host, secure = _parse_endpoint(settings.s3_endpoint)
    client = Minio(host, access_key=settings.s3_access_key, secret_key=settings.s3_secret_key, secure=secure)
    return BlobStore(client, settings.s3_bucket_uploads)
