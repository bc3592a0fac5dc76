import redis
import urllib3
from minio import Minio


def build_redis_client(config):
    timeout = config["REDIS_SOCKET_TIMEOUT"]
    return redis.Redis.from_url(
        config["REDIS_URL"],
        decode_responses=True,
        socket_timeout=timeout,
        socket_connect_timeout=timeout,
    )


def build_minio_client(config):
    # No retries: a failed upload falls back to an inline data URI instead.
    http_client = urllib3.PoolManager(
        timeout=urllib3.Timeout(
            connect=config["MINIO_CONNECT_TIMEOUT"],
            read=config["MINIO_READ_TIMEOUT"],
        ),
        retries=False,
        maxsize=config.get("MINIO_HTTP_POOL_MAXSIZE", 32),
    )
    return Minio(
        config["MINIO_ENDPOINT"],
        access_key=config["MINIO_ACCESS_KEY"],
        secret_key=config["MINIO_SECRET_KEY"],
        secure=config["MINIO_SECURE"],
        http_client=http_client,
    )
