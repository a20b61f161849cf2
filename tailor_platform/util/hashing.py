import hashlib
import secrets


def sha256_hex(s: str) -> str:
    return hashlib.sha256(s.encode("utf-8")).hexdigest()


def new_token() -> str:
    """Random URL-safe token for emailed links. Only its sha256 is stored."""
    return secrets.token_urlsafe(32)


def sha256_hex_bytes(b: bytes) -> str:
    return hashlib.sha256(b).hexdigest()
