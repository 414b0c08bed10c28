"""Stable fingerprints for detected secrets.

A fingerprint is a hash of the normalized secret text and the rule that
found it. The file path is deliberately not part of it, so one secret
reused across files collapses to one finding, and rescans reproduce the
same fingerprints without any salt.
"""

from __future__ import annotations

import hashlib
import re

_QUOTES = "\"'`"
_URL_PREFIX_RE = re.compile(r"^(?P<scheme>[A-Za-z][A-Za-z0-9+.\-]*://)(?P<rest>.*)$", re.DOTALL)
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[A-Za-z]{2,}$")


def normalize(matched_text: str) -> str:
    """Canonical form of a secret used for hashing."""
    text = matched_text.strip()
    while len(text) >= 2 and text[0] == text[-1] and text[0] in _QUOTES:
        text = text[1:-1].strip()

    url = _URL_PREFIX_RE.match(text)
    if url:
        rest = url.group("rest")
        # scheme and host are case-insensitive, the path is not
        userinfo, at, host_and_path = rest.rpartition("@")
        host, slash, path = host_and_path.partition("/")
        return f"{url.group('scheme').lower()}{userinfo}{at}{host.lower()}{slash}{path}"

    if _EMAIL_RE.match(text):
        return text.lower()

    # line endings inside multi-line secrets (PEM blocks) should not matter
    return text.replace("\r\n", "\n")


def fingerprint(matched_text: str, rule_id: str) -> str:
    digest = hashlib.sha256()
    digest.update(rule_id.encode("utf-8"))
    digest.update(b"\x00")
    digest.update(normalize(matched_text).encode("utf-8", errors="surrogateescape"))
    return digest.hexdigest()
