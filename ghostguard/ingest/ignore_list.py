"""Ignore-list store: fingerprints the user has marked as accepted."""

from __future__ import annotations

import logging
import re
from pathlib import Path

logger = logging.getLogger(__name__)

_FINGERPRINT_RE = re.compile(r"^[0-9a-f]{64}$")


class IgnoreList:
    """Text file with one fingerprint per line. ``#`` starts a comment."""

    def __init__(self, path: Path, fingerprints: set[str] | None = None):
        self.path = Path(path)
        self.fingerprints: set[str] = set(fingerprints or ())

    @classmethod
    def load(cls, path: Path) -> IgnoreList:
        path = Path(path)
        if not path.exists():
            return cls(path)

        fingerprints = set()
        for number, line in enumerate(path.read_text(encoding="utf-8").splitlines(), start=1):
            value = line.split("#", 1)[0].strip().lower()
            if not value:
                continue
            if not _FINGERPRINT_RE.match(value):
                logger.warning(f"{path}:{number}: not a fingerprint, ignoring {value[:16]!r}")
                continue
            fingerprints.add(value)

        logger.debug(f"Loaded {len(fingerprints)} ignored fingerprints from {path}")
        return cls(path, fingerprints)

    def __contains__(self, fingerprint: str) -> bool:
        return fingerprint.lower() in self.fingerprints

    def __len__(self) -> int:
        return len(self.fingerprints)

    def add(self, fingerprint: str, note: str | None = None) -> bool:
        """Append a fingerprint to the file. Returns False if it was already there."""
        value = fingerprint.strip().lower()
        if not _FINGERPRINT_RE.match(value):
            raise ValueError(f"Not a sha256 fingerprint: {fingerprint!r}")
        if value in self.fingerprints:
            return False

        self.path.parent.mkdir(parents=True, exist_ok=True)
        existing = self.path.read_bytes() if self.path.exists() else b""
        needs_newline = bool(existing) and not existing.endswith(b"\n")
        with self.path.open("a", encoding="utf-8") as handle:
            if needs_newline:
                handle.write("\n")
            handle.write(f"{value}  # {note}\n" if note else f"{value}\n")

        self.fingerprints.add(value)
        logger.info(f"Ignored fingerprint {value[:12]}")
        return True
