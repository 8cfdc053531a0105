import hashlib
import hmac
import secrets
import uuid
from typing import Optional

from doctrust.core.config import settings


def sha256_hex(data: bytes) -> str:
    """
    Generate SHA-256 hash of data

    :param data: File content as bytes
    :return: Hexadecimal hash string
    """
    return hashlib.sha256(data).hexdigest()


def hash_ip(ip_address: Optional[str], secret: Optional[str] = None) -> str:
    """
    One-way keyed digest of a client IP address.

    Raw addresses never leave the HTTP boundary; only this digest is handed to the
    audit logger and stored on signatures.

    :param ip_address: Client address, None when the transport does not expose one
    :param secret: HMAC key, defaults to IP_HASH_SECRET
    :return: Hexadecimal HMAC-SHA256 digest
    """
    key = (secret or settings.IP_HASH_SECRET).encode()
    return hmac.new(key, (ip_address or "unknown").encode(), hashlib.sha256).hexdigest()


def generate_link_token(length: int = 32) -> str:
    """
    Generate a cryptographically secure, URL-safe access link token

    :param length: Number of random bytes (default 32 bytes = 256 bits)
    """
    return secrets.token_urlsafe(length)


def generate_id() -> str:
    return str(uuid.uuid4())


def generate_secure_filename(original_filename: str, owner_id: Optional[str] = None) -> str:
    """
    Generate a non-guessable storage name keeping the original extension
    """
    if '.' in original_filename:
        ext = original_filename.rsplit('.', 1)[1].lower()
    else:
        ext = 'bin'

    hash_base = f"{uuid.uuid4()}_{owner_id or ''}_{secrets.token_hex(8)}"
    return f"{sha256_hex(hash_base.encode())[:16]}.{ext}"
