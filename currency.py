"""Conversion between readable currency codes and the ledger's hex encoding.

The XRP Ledger stores currencies either as 3-character ISO-style codes or as
160-bit values written as 40 hex characters.  Non-standard codes such as
``"SOLO"`` are therefore seen on trust lines as
``"534F4C4F00000000000000000000000000000000"``.

:func:`encode` is not the inverse of :func:`decode`: a 3-character input is
always returned unchanged, every other input is hex-padded.  Stored whitelists
depend on that behaviour so it is kept as is.
"""

from __future__ import annotations

import re

HEX_CODE_LENGTH = 40

_HEX40 = re.compile(r"[0-9A-Fa-f]{40}")


def is_hex_code(code: str) -> bool:
    """Return ``True`` for a 40-character hex currency code."""

    return _HEX40.fullmatch(code) is not None


def decode(code: str) -> str:
    """Return the readable form of ``code``.

    Anything that is not a 40-character hex string is returned unchanged.
    Decoding stops at the first zero byte and trailing whitespace is dropped;
    when nothing readable remains the original hex is returned.
    """

    if not is_hex_code(code):
        return code

    chars = []
    for i in range(0, HEX_CODE_LENGTH, 2):
        byte = int(code[i:i + 2], 16)
        if byte == 0:
            break
        chars.append(chr(byte))

    text = "".join(chars).rstrip()
    return text or code


def encode(code: str) -> str:
    """Return the 40-character hex form of ``code``.

    3-character codes are standard currencies and come back untouched.
    """

    if len(code) == 3:
        return code

    hexed = "".join(format(ord(ch), "02X") for ch in code)
    return hexed.ljust(HEX_CODE_LENGTH, "0")[:HEX_CODE_LENGTH].upper()
