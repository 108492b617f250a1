"""
Username canonicalization, following MediaWiki's user name rules.

Three rigor levels are supported:

- VALID: syntactically a user name (no title-breaking characters, no
  slash, not an IP address, at most 255 bytes)
- USABLE: valid and not reserved for system use
- CREATABLE: usable and free of the characters MediaWiki refuses in new
  account names
"""

from __future__ import annotations

import ipaddress
import re
from enum import Enum
from typing import Optional

MAX_NAME_BYTES = 255

_TITLE_INVALID = re.compile(r"[#<>\[\]|{}/\x00-\x1f\x7f\u0080-\u009f\ufffd]")
_CREATE_INVALID = re.compile(r"[@:>=]")
_WHITESPACE = re.compile(r"[ _]+")

RESERVED_NAMES = frozenset({
    "MediaWiki default",
    "Conversion script",
    "Maintenance script",
    "Template namespace initialisation script",
    "ScriptImporter",
    "Unknown user",
})


class Rigor(str, Enum):
    VALID = "valid"
    USABLE = "usable"
    CREATABLE = "creatable"


def _is_ip(name: str) -> bool:
    try:
        ipaddress.ip_address(name)
    except ValueError:
        return False
    return True


def normalize_username(name: str) -> str:
    """Collapse underscores/spaces and uppercase the first character."""
    name = _WHITESPACE.sub(" ", name).strip()
    if not name:
        return ""
    return name[0].upper() + name[1:]


def canonical_username(name: Optional[str], rigor: Rigor = Rigor.VALID) -> Optional[str]:
    """
    Canonical form of `name`, or None if it fails `rigor`.
    """
    if not name:
        return None
    canonical = normalize_username(name)
    if not canonical:
        return None
    if len(canonical.encode("utf-8")) > MAX_NAME_BYTES:
        return None
    if _TITLE_INVALID.search(canonical) or _is_ip(canonical):
        return None

    if rigor in (Rigor.USABLE, Rigor.CREATABLE) and canonical in RESERVED_NAMES:
        return None
    if rigor is Rigor.CREATABLE and _CREATE_INVALID.search(canonical):
        return None
    return canonical
