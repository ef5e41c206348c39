from __future__ import annotations
import io
from urllib.parse import quote
from minio import Minio
from minio.error import S3Error
import structlog
from urllib3.exceptions import HTTPError as TransportError
from portal.errors import UploadError

log = structlog.get_logger()

def _parse_endpoint(ep: str) -> tuple[str, bool]:
    # Return (host:port, secure)
    secure = ep.startswith("https://")
    host = ep.replace("http://", "").replace("https://", "").rstrip("/")
    return host, secure

class BlobStore:
    """Key-addressed uploads bucket. Objects are public-read at the bucket policy level."""

    def __init__(self, endpoint: str, public_url: str, access_key: str, secret_key: str, bucket: str):
        self.bucket = bucket
        self.public_base = public_url.rstrip("/")
        self._endpoint = endpoint
        self._access_key = access_key
        self._secret_key = secret_key
        self._minio: Minio | None = None

    def _client(self) -> Minio:
        # created on first use so importing the app never dials the object store
        if self._minio is None:
            host, secure = _parse_endpoint(self._endpoint)
            self._minio = Minio(host, access_key=self._access_key, secret_key=self._secret_key, secure=secure)
            try:
                if not self._minio.bucket_exists(self.bucket):
                    self._minio.make_bucket(self.bucket)
            except S3Error as e:
                # another worker may have created it between the two calls
                if e.code not in ("BucketAlreadyOwnedByYou", "BucketAlreadyExists"):
                    raise
        return self._minio

    def exists(self, key: str) -> bool:
        try:
            self._client().stat_object(self.bucket, key)
            return True
        except S3Error as e:
            if e.code in ("NoSuchKey", "NoSuchObject"):
                return False
            raise

    def upload(self, key: str, data: bytes, content_type: str, overwrite: bool = True) -> None:
        if not overwrite and self.exists(key):
            raise FileExistsError(f"Object already exists: {key}")
        try:
            self._client().put_object(
                self.bucket, key, io.BytesIO(data), length=len(data), content_type=content_type,
                metadata={"Cache-Control": "max-age=3600"},
            )
        except (S3Error, TransportError) as e:
            log.warning("blob_upload_failed", key=key, error=str(e))
            raise UploadError(f"upload failed for {key}", cause=e) from e
        log.info("blob_uploaded", key=key, size=len(data))

    def public_url(self, key: str, bucket: str | None = None) -> str:
        # deterministic, unsigned; no network call
        return f"{self.public_base}/{bucket or self.bucket}/{quote(key, safe='/')}"
