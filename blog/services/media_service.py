import base64
import io
import logging
import mimetypes
import time
import uuid
from threading import Lock

from flask import has_request_context, request
from werkzeug.utils import secure_filename

from blog.errors import InvalidMedia, MediaStorageError
from blog.extensions.clients import build_minio_client

logger = logging.getLogger(__name__)


ALLOWED_MEDIA_PREFIXES = ("image/", "video/", "audio/")


def build_media_url(config, object_name: str) -> str:
    base_url = config.get("APP_PUBLIC_BASE_URL", "").rstrip("/")
    if not base_url and has_request_context():
        base_url = request.url_root.rstrip("/")

    if base_url:
        return f"{base_url}/media/{object_name}"
    return f"/media/{object_name}"


def build_data_uri(data: bytes, mimetype: str) -> str:
    encoded = base64.b64encode(data).decode("ascii")
    return f"data:{mimetype};base64,{encoded}"


class MediaService:
    """Turns an uploaded file into something a post or comment can store.

    Remote posts get a durable ``/media/...`` URL backed by MinIO; local
    posts, or remote ones whose upload failed, get an inline data URI.
    """

    def __init__(self, config):
        self.config = config
        self._client = None
        self._client_lock = Lock()

    def client(self):
        """MinIO client for this context, built on first use."""
        with self._client_lock:
            if self._client is None:
                self._client = build_minio_client(self.config)
            return self._client

    def to_storable(self, upload, remote: bool):
        """Return ``(media, media_type)``, or ``(None, None)`` without a file."""
        if upload is None or not getattr(upload, "filename", ""):
            return None, None

        data, mimetype = self._read(upload)

        if remote:
            try:
                object_name = self._upload(data, mimetype, upload.filename)
                return build_media_url(self.config, object_name), mimetype
            except Exception as e:
                if not self.config.get("MEDIA_LOCAL_FALLBACK_ENABLED", True):
                    raise MediaStorageError() from e
                logger.warning("Media upload failed, storing %s inline: %s", upload.filename, e)

        return build_data_uri(data, mimetype), mimetype

    def _read(self, upload):
        mimetype = getattr(upload, "mimetype", None) or ""
        if not mimetype:
            mimetype = mimetypes.guess_type(upload.filename)[0] or ""
        if not mimetype.startswith(ALLOWED_MEDIA_PREFIXES):
            raise InvalidMedia(f"Unsupported media type: {mimetype or 'unknown'}")

        max_bytes = int(self.config.get("MEDIA_MAX_BYTES", 20 * 1024 * 1024))
        stream = getattr(upload, "stream", upload)
        try:
            stream.seek(0)
        except (AttributeError, OSError):
            pass
        data = stream.read(max_bytes + 1)
        if not data:
            raise InvalidMedia("Attachment is empty")
        if len(data) > max_bytes:
            raise InvalidMedia("Attachment is too large")
        return data, mimetype

    def _upload(self, data: bytes, mimetype: str, filename: str) -> str:
        minio = self.client()
        bucket = self.config["MINIO_BUCKET"]
        if not minio.bucket_exists(bucket):
            minio.make_bucket(bucket)

        safe_name = secure_filename(filename) or "upload"
        object_name = f"uploads/{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}-{safe_name}"
        minio.put_object(
            bucket_name=bucket,
            object_name=object_name,
            data=io.BytesIO(data),
            length=len(data),
            content_type=mimetype,
        )
        return object_name
