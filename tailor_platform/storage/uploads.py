"""Image uploads to S3-compatible object storage.

Images arrive as base64 data URLs (`data:image/png;base64,...`) inside JSON bodies.
"""

from __future__ import annotations

import base64
import binascii
import re
import time
from typing import Any, Optional, Tuple

from tailor_platform.config import Config
from tailor_platform.util.hashing import sha256_hex_bytes


MAX_IMAGE_BYTES = 5 * 1024 * 1024

_DATA_URL_RE = re.compile(r"^data:image/(png|jpe?g|gif|webp);base64,(.+)$", re.IGNORECASE | re.DOTALL)
_EXT = {"png": "png", "jpg": "jpg", "jpeg": "jpg", "gif": "gif", "webp": "webp"}

_s3_client = None


def _debug(msg: str) -> None:
    print(f"[storage] {msg}")


def decode_data_url(data_url: str) -> Tuple[bytes, str, str]:
    """Return (bytes, content_type, extension). Raises ValueError invalid_image_format / image_too_large."""
    m = _DATA_URL_RE.match((data_url or "").strip())
    if not m:
        raise ValueError("invalid_image_format")
    kind = m.group(1).lower()
    try:
        data = base64.b64decode(m.group(2), validate=False)
    except (binascii.Error, ValueError):
        raise ValueError("invalid_image_format")
    if not data:
        raise ValueError("invalid_image_format")
    if len(data) > MAX_IMAGE_BYTES:
        raise ValueError("image_too_large")
    ext = _EXT[kind]
    content_type = "image/jpeg" if ext == "jpg" else f"image/{ext}"
    return data, content_type, ext


def _build_s3_client(cfg: Config) -> Any:
    import boto3
    from botocore.config import Config as BotoConfig

    if not cfg.S3_BUCKET:
        raise RuntimeError("s3_bucket_missing")

    config = None
    if cfg.S3_FORCE_PATH_STYLE:
        config = BotoConfig(s3={"addressing_style": "path"})

    return boto3.client(
        "s3",
        region_name=cfg.S3_REGION or None,
        endpoint_url=cfg.S3_ENDPOINT_URL,
        aws_access_key_id=cfg.S3_ACCESS_KEY_ID,
        aws_secret_access_key=cfg.S3_SECRET_ACCESS_KEY,
        config=config,
    )


def _get_s3_client(cfg: Config) -> Any:
    global _s3_client
    if _s3_client is None:
        _s3_client = _build_s3_client(cfg)
    return _s3_client


def public_url(cfg: Config, key: str) -> str:
    if cfg.S3_PUBLIC_BASE_URL:
        return f"{cfg.S3_PUBLIC_BASE_URL.rstrip('/')}/{key}"
    if cfg.S3_ENDPOINT_URL:
        return f"{cfg.S3_ENDPOINT_URL.rstrip('/')}/{cfg.S3_BUCKET}/{key}"
    return f"https://{cfg.S3_BUCKET}.s3.{cfg.S3_REGION}.amazonaws.com/{key}"


def build_object_key(*, user_id: int, folder: str, data: bytes, ext: str) -> str:
    stamp = int(time.time())
    return f"{folder}/{int(user_id)}/{stamp}-{sha256_hex_bytes(data)[:16]}.{ext}"


def upload_image(cfg: Config, *, user_id: int, data_url: str, folder: str = "uploads") -> str:
    """Upload a base64 data-URL image and return its public URL."""
    data, content_type, ext = decode_data_url(data_url)
    key = build_object_key(user_id=user_id, folder=folder, data=data, ext=ext)
    client = _get_s3_client(cfg)
    client.put_object(
        Bucket=cfg.S3_BUCKET,
        Key=key,
        Body=data,
        ContentType=content_type,
        CacheControl="public, max-age=31536000",
    )
    _debug(f"Uploaded {len(data)} bytes to s3://{cfg.S3_BUCKET}/{key}")
    return public_url(cfg, key)


def resolve_image(cfg: Config, *, user_id: int, image: Optional[str], folder: str) -> Optional[str]:
    """Accept either a data URL (uploaded) or an http(s) URL (kept as-is)."""
    raw = (image or "").strip()
    if not raw:
        return None
    if raw.startswith("data:"):
        return upload_image(cfg, user_id=user_id, data_url=raw, folder=folder)
    if raw.startswith("http://") or raw.startswith("https://"):
        return raw
    raise ValueError("invalid_image_format")
