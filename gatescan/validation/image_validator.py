"""Syntactic checks on scan payloads.

A payload is either a data URI (``data:image/jpeg;base64,...``) as produced by
a browser canvas screenshot, or a bare base64 string. Nothing here looks at
pixels; a well-formed payload holding a broken image fails later, inside the
recognizer.
"""
from __future__ import annotations

import base64
import binascii
import logging
import re

logger = logging.getLogger(__name__)

_DATA_URI_PREFIX = re.compile(r"^data:image/[a-z]+;base64,", re.IGNORECASE)
_RAW_BASE64 = re.compile(r"([A-Za-z0-9+/]{4})*([A-Za-z0-9+/]{3}=|[A-Za-z0-9+/]{2}==)?")


class ImageDecodeError(ValueError):
    """The payload passed validation but does not decode to image bytes."""


def _as_text(payload: object) -> str | None:
    if isinstance(payload, str):
        return payload
    if isinstance(payload, (bytes, bytearray)):
        try:
            return bytes(payload).decode("ascii")
        except UnicodeDecodeError:
            return None
    return None


def is_valid_image_payload(payload: object) -> bool:
    text = _as_text(payload)
    if not text:
        logger.debug("image_payload_rejected", extra={"payload_type": type(payload).__name__})
        return False

    valid = bool(_DATA_URI_PREFIX.match(text) or _RAW_BASE64.fullmatch(text))
    logger.debug("image_payload_checked", extra={"valid": valid, "length": len(text)})
    return valid


def strip_data_uri(payload: str) -> str:
    return _DATA_URI_PREFIX.sub("", payload, count=1)


def decode_image_payload(payload: str | bytes) -> bytes:
    """Strip any data-URI prefix and base64-decode the remainder.

    Raises:
        ImageDecodeError: on malformed base64 or when nothing is left to decode.
    """
    text = _as_text(payload)
    if text is None:
        raise ImageDecodeError("payload is not ASCII text")

    try:
        raw = base64.b64decode(strip_data_uri(text))
    except binascii.Error as exc:
        raise ImageDecodeError(f"invalid base64 data: {exc}") from exc

    if not raw:
        raise ImageDecodeError("payload decodes to zero bytes")
    return raw
