import base64
import binascii
import re
from typing import Any

_BASE64_RE = re.compile(r"^[A-Za-z0-9+/\-_]*={0,2}$")
_U32_MAX = 2**32 - 1


def encode_base64_url_safe(data: bytes) -> str:
    """URL-safe base64 without padding, as Gmail uses for message bodies."""
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def decode_base64_bytes(data: str) -> bytes:
    """
    Decode base64 in either alphabet, padded or not.

    Raises ValueError for characters outside the alphabet or for a length
    no encoder can produce.
    """
    text = data.strip()
    if not text:
        return b""
    if not _BASE64_RE.match(text):
        raise ValueError("Invalid base64 data: unexpected characters")
    text = text.rstrip("=").replace("+", "-").replace("/", "_")
    if len(text) % 4 == 1:
        raise ValueError("Invalid base64 data: impossible length")
    text += "=" * (-len(text) % 4)
    try:
        return base64.urlsafe_b64decode(text)
    except binascii.Error as exc:
        raise ValueError(f"Invalid base64 data: {exc}") from exc


def decode_base64(data: str) -> str:
    try:
        return decode_base64_bytes(data).decode("utf-8")
    except UnicodeDecodeError as exc:
        raise ValueError(f"Decoded data is not UTF-8: {exc}") from exc


def parse_max_results(value: Any, default: int) -> int:
    """Lenient max_results parsing: bad or out-of-range input means default."""
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, int):
        number = value
    elif isinstance(value, str):
        text = value.strip()
        # isdigit alone accepts superscripts and other digits int() rejects
        if not (text.isascii() and text.isdigit()):
            return default
        number = int(text)
    else:
        return default
    if 0 <= number <= _U32_MAX:
        return number
    return default
