"""
Property List Decoding
=======================

Thin adapter over :mod:`plistlib` used for two payloads:

- the XML plist carried by the embedded-entitlements code-signature blob;
- the bundle's ``Info.plist`` descriptor (binary or XML).

Both decode to a plain ``dict``.  Entitlement payloads are frequently
NUL-padded to a word boundary; the padding is stripped from XML
payloads before parsing, while binary plists are passed through intact
since their trailer may legitimately end in such bytes.
An empty payload means "no entitlements" and decodes to ``{}``.
"""

from __future__ import annotations

import plistlib
from typing import Any
from xml.parsers.expat import ExpatError

from warden.core.errors import MalformedPlist
from warden.core.models import Entitlements

_BINARY_PREFIX = b"bplist"

# plistlib surfaces malformed input through several builtin exceptions; a bad
# <date> element, for one, raises AttributeError.
_DECODE_ERRORS = (
    plistlib.InvalidFileException,
    ExpatError,
    ValueError,
    TypeError,
    KeyError,
    IndexError,
    AttributeError,
    OverflowError,
    RecursionError,
)


def load_plist(data: bytes, *, path: str | None = None) -> dict[str, Any]:
    """Decode a binary or XML property list whose top level is a dictionary.

    Raises:
        MalformedPlist: The data is not a plist or its root is not a dict.
    """
    try:
        value = plistlib.loads(data)
    except _DECODE_ERRORS as exc:
        raise MalformedPlist(f"Invalid property list: {exc}", path=path) from exc
    if not isinstance(value, dict):
        raise MalformedPlist(
            f"Property list root is {type(value).__name__}, expected dict",
            path=path,
        )
    return value


class EntitlementsDecoder:
    """Decode raw entitlement blob payloads.

    Usage::

        decoder = EntitlementsDecoder()
        values = decoder.decode(payload)
        ents = decoder.decode_entitlements(payload)
    """

    def decode(self, payload: bytes, *, path: str | None = None) -> dict[str, Any]:
        """Decode *payload* into a key/value mapping.

        Returns:
            The decoded dictionary, ``{}`` for an empty payload.

        Raises:
            MalformedPlist: The payload is not a dictionary plist.
        """
        if payload.startswith(_BINARY_PREFIX):
            return load_plist(payload, path=path)
        trimmed = payload.rstrip(b"\x00").strip()
        if not trimmed:
            return {}
        return load_plist(trimmed, path=path)

    def decode_entitlements(self, payload: bytes, *, path: str | None = None) -> Entitlements:
        return Entitlements(values=self.decode(payload, path=path))
