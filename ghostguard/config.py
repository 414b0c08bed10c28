"""Central configuration for GhostGuard."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

_CLASSIFIER_BACKENDS = ("heuristic", "llm", "http")


def _default_max_workers() -> int:
    # bounded by cores, never by the number of files in a scan
    return min(32, (os.cpu_count() or 1) + 4)


@dataclass(frozen=True)
class Config:
    """Immutable process configuration."""

    # Scan execution
    max_workers: int = field(
        default_factory=lambda: int(
            os.getenv("GHOSTGUARD_MAX_WORKERS", str(_default_max_workers()))
        )
    )
    max_file_bytes: int = int(os.getenv("GHOSTGUARD_MAX_FILE_BYTES", str(2 * 1024 * 1024)))
    output_dir: Path = Path(os.getenv("GHOSTGUARD_OUTPUT_DIR", "./reports"))
    ignore_file: Path = Path(os.getenv("GHOSTGUARD_IGNORE_FILE", ".ghostguard-ignore"))

    # Classifier
    classifier_backend: str = field(
        default_factory=lambda: os.getenv("GHOSTGUARD_CLASSIFIER_BACKEND", "heuristic").lower()
    )
    classifier_timeout: float = float(os.getenv("GHOSTGUARD_CLASSIFIER_TIMEOUT", "10"))
    classifier_batch_timeout: float = float(
        os.getenv("GHOSTGUARD_CLASSIFIER_BATCH_TIMEOUT", "60")
    )
    classifier_url: str = field(
        default_factory=lambda: os.getenv("GHOSTGUARD_CLASSIFIER_URL", "")
    )

    # LLM settings
    anthropic_api_key: str = field(
        default_factory=lambda: os.getenv("ANTHROPIC_API_KEY", "")
    )
    llm_model: str = field(
        default_factory=lambda: os.getenv("GHOSTGUARD_LLM_MODEL", "claude-sonnet-4-5")
    )
    llm_max_tokens: int = 1024

    # Directories to always skip
    skip_dirs: tuple[str, ...] = (
        "node_modules", ".git", "__pycache__", "venv", ".venv",
        "dist", "build", ".next", ".nuxt", "coverage", ".nyc_output",
        ".pytest_cache", ".mypy_cache", ".tox", ".eggs", "bower_components",
        ".gradle", "target", "Pods",
    )

    # Never scanned
    binary_extensions: tuple[str, ...] = (
        ".png", ".jpg", ".jpeg", ".gif", ".ico", ".webp", ".bmp",
        ".pdf", ".doc", ".docx", ".xls", ".xlsx", ".ppt", ".pptx",
        ".zip", ".tar", ".gz", ".tgz", ".rar", ".7z", ".jar",
        ".exe", ".dll", ".so", ".dylib", ".bin",
        ".woff", ".woff2", ".ttf", ".eot",
        ".mp3", ".mp4", ".avi", ".mov", ".wav",
        ".pyc", ".pyo", ".class", ".o",
    )

    def validate(self) -> list[str]:
        """Return list of configuration errors (empty = valid)."""
        errors = []
        if self.max_workers < 1:
            errors.append("GHOSTGUARD_MAX_WORKERS must be at least 1")
        if self.classifier_backend not in _CLASSIFIER_BACKENDS:
            errors.append(
                f"GHOSTGUARD_CLASSIFIER_BACKEND must be one of {', '.join(_CLASSIFIER_BACKENDS)}"
            )
        if self.classifier_backend == "llm" and not self.anthropic_api_key:
            errors.append("ANTHROPIC_API_KEY not set (required by the llm classifier)")
        if self.classifier_backend == "http" and not self.classifier_url:
            errors.append("GHOSTGUARD_CLASSIFIER_URL not set (required by the http classifier)")
        if self.classifier_timeout <= 0:
            logger.warning("GHOSTGUARD_CLASSIFIER_TIMEOUT <= 0; classifier calls will degrade")
        return errors


# Singleton
config = Config()
