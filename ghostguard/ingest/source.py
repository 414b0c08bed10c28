"""Artifact discovery: turn a directory or a set of uploaded files into SourceArtifacts."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable

from ghostguard.config import config
from ghostguard.detect.models import SourceArtifact
from ghostguard.rule_config import ScanConfig

logger = logging.getLogger(__name__)

# content sniffing window for binary detection
_SNIFF_BYTES = 8192


@dataclass
class ArtifactSet:
    """Artifacts collected from one source plus what was left out."""

    artifacts: list[SourceArtifact]
    total_files_discovered: int = 0
    skipped: dict[str, int] = field(default_factory=dict)

    @property
    def total_files_skipped(self) -> int:
        return sum(self.skipped.values())

    def skip(self, reason: str) -> None:
        self.skipped[reason] = self.skipped.get(reason, 0) + 1


def _should_skip_dir(dir_name: str) -> bool:
    """Check if a directory should be skipped."""
    return dir_name in config.skip_dirs


def _looks_binary(content: bytes) -> bool:
    return b"\x00" in content[:_SNIFF_BYTES]


def _read_artifact(
    path: Path,
    relative: str,
    result: ArtifactSet,
    max_bytes: int,
) -> SourceArtifact | None:
    if path.suffix.lower() in config.binary_extensions:
        result.skip("binary")
        return None
    try:
        size = path.stat().st_size
        if size > max_bytes:
            logger.debug(f"Skipping {relative}: {size:,} bytes exceeds {max_bytes:,}")
            result.skip("oversized")
            return None
        content = path.read_bytes()
    except OSError as exc:
        logger.warning(f"Could not read {relative}: {exc}")
        result.skip("unreadable")
        return None

    if _looks_binary(content):
        result.skip("binary")
        return None
    return SourceArtifact(path=relative, content=content)


def collect_artifacts(
    root: Path,
    scan_config: ScanConfig | None = None,
    max_bytes: int | None = None,
) -> ArtifactSet:
    """Walk a repository snapshot on disk.

    Args:
        root: Directory to scan
        scan_config: Exclusion rules (default: built-in defaults)
        max_bytes: Files larger than this are skipped

    Returns:
        ArtifactSet with artifacts sorted by relative path
    """
    scan_config = scan_config or ScanConfig.default()
    max_bytes = max_bytes or config.max_file_bytes
    root = Path(root)
    result = ArtifactSet(artifacts=[])

    for path in sorted(root.rglob("*")):
        relative_parts = path.relative_to(root).parts
        if any(_should_skip_dir(part) for part in relative_parts[:-1]):
            continue
        if not path.is_file():
            continue

        result.total_files_discovered += 1
        relative = path.relative_to(root).as_posix()
        if scan_config.is_path_excluded(relative):
            result.skip("excluded")
            continue

        artifact = _read_artifact(path, relative, result, max_bytes)
        if artifact is not None:
            result.artifacts.append(artifact)

    logger.info(
        f"Collected {len(result.artifacts)} files from {root} "
        f"({result.total_files_discovered} discovered, {result.total_files_skipped} skipped)"
    )
    return result


def artifacts_from_files(
    paths: Iterable[Path],
    base: Path | None = None,
    scan_config: ScanConfig | None = None,
    max_bytes: int | None = None,
) -> ArtifactSet:
    """Build artifacts from an explicit file set (an upload).

    Paths are reported relative to ``base`` when given and possible,
    otherwise as passed in.
    """
    scan_config = scan_config or ScanConfig.default()
    max_bytes = max_bytes or config.max_file_bytes
    result = ArtifactSet(artifacts=[])
    seen: set[str] = set()

    for path in paths:
        path = Path(path)
        if not path.is_file():
            logger.warning(f"Not a file, skipping: {path}")
            result.skip("missing")
            continue

        relative = path.as_posix()
        if base is not None:
            try:
                relative = path.resolve().relative_to(Path(base).resolve()).as_posix()
            except ValueError:
                pass
        if relative in seen:
            continue
        seen.add(relative)

        result.total_files_discovered += 1
        if scan_config.is_path_excluded(relative):
            result.skip("excluded")
            continue
        artifact = _read_artifact(path, relative, result, max_bytes)
        if artifact is not None:
            result.artifacts.append(artifact)

    result.artifacts.sort(key=lambda a: a.path)
    logger.info(f"Loaded {len(result.artifacts)} of {result.total_files_discovered} uploaded files")
    return result
