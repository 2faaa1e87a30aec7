# totp.py
"""Time-based one-time passwords (RFC 6238 on top of RFC 4226 HOTP)."""
import base64
import hashlib
import hmac
import struct
import time


def decode_secret(secret_base32: str) -> bytes:
    cleaned = "".join(secret_base32.split()).replace("=", "").upper()
    if not cleaned:
        raise ValueError("empty TOTP secret")
    padding = "=" * (-len(cleaned) % 8)
    try:
        return base64.b32decode(cleaned + padding)
    except ValueError as exc:
        raise ValueError("TOTP secret is not valid base32") from exc


def hotp(key: bytes, counter: int, digits: int = 6, digestmod=hashlib.sha1) -> str:
    digest = hmac.new(key, struct.pack(">Q", counter), digestmod).digest()
    offset = digest[-1] & 0x0F
    binary = struct.unpack(">I", digest[offset:offset + 4])[0] & 0x7FFFFFFF
    return str(binary % (10 ** digits)).zfill(digits)


def generate_time_code(
    secret_base32: str,
    window_seconds: int = 30,
    digits: int = 6,
    now: float | None = None,
) -> tuple[str, int]:
    """Return ``(code, seconds_remaining)`` for the window containing ``now``."""
    if window_seconds <= 0:
        raise ValueError("window_seconds must be positive")
    timestamp = int(time.time() if now is None else now)
    key = decode_secret(secret_base32)
    code = hotp(key, timestamp // window_seconds, digits)
    return code, window_seconds - (timestamp % window_seconds)
