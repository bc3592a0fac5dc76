from flask import Blueprint, Response, current_app, jsonify, request, stream_with_context
from minio.error import S3Error

from blog.context import get_context

main_bp = Blueprint("main", __name__)


def _is_media_not_found(error: S3Error) -> bool:
    return error.code in {"NoSuchKey", "NoSuchBucket", "NoSuchObject"}


def _media_error_response(error: S3Error):
    if _is_media_not_found(error):
        return jsonify({"error": "Media not found"}), 404
    return jsonify({"error": "Media unavailable"}), 503


def _build_etag(value) -> str | None:
    value = str(value or "").strip().strip('"')
    if not value:
        return None
    return f'"{value}"'


def _build_media_headers(stat):
    cache_max_age = max(
        int(current_app.config.get("MEDIA_CACHE_MAX_AGE_SECONDS", 7 * 24 * 60 * 60)),
        0,
    )
    headers = {
        "Cache-Control": f"public, max-age={cache_max_age}, immutable",
        "Content-Type": getattr(stat, "content_type", None) or "application/octet-stream",
    }

    size = getattr(stat, "size", None)
    if size is not None:
        headers["Content-Length"] = str(size)

    etag = _build_etag(getattr(stat, "etag", None))
    if etag:
        headers["ETag"] = etag
    return headers


@main_bp.route("/health", methods=["GET"])
def health():
    context = get_context()
    return jsonify({
        "status": "ok",
        "storage": context.selector.current.name,
    }), 200


@main_bp.route("/media/<path:object_name>", methods=["GET", "HEAD"])
def get_media(object_name: str):
    bucket = current_app.config["MINIO_BUCKET"]
    minio = get_context().media.client()

    try:
        stat = minio.stat_object(bucket_name=bucket, object_name=object_name)
    except S3Error as e:
        return _media_error_response(e)
    except Exception:
        return jsonify({"error": "Media unavailable"}), 503

    headers = _build_media_headers(stat)
    if_none_match = request.headers.get("If-None-Match", "")
    if headers.get("ETag") and headers["ETag"].strip('"') in {
        candidate.strip().strip('"') for candidate in if_none_match.split(",")
    }:
        return Response(status=304, headers=headers)

    if request.method == "HEAD":
        return Response(status=200, headers=headers)

    try:
        minio_response = minio.get_object(bucket_name=bucket, object_name=object_name)
    except S3Error as e:
        return _media_error_response(e)
    except Exception:
        return jsonify({"error": "Media unavailable"}), 503

    chunk_size = max(
        int(current_app.config.get("MEDIA_STREAM_CHUNK_SIZE", 256 * 1024)),
        1024,
    )

    def _stream():
        try:
            for chunk in minio_response.stream(chunk_size):
                yield chunk
        finally:
            minio_response.close()
            minio_response.release_conn()

    return Response(
        stream_with_context(_stream()),
        status=200,
        headers=headers,
        direct_passthrough=True,
    )
