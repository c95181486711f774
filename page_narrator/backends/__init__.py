from pathlib import Path

from page_narrator.backends.base import (
    BackendError,
    PagedBackend,
    ReflowableBackend,
    TextRange,
)

SUPPORTED_EXTENSIONS = {".epub", ".pdf"}


def backend_kind(path: Path) -> str:
    suffix = Path(path).suffix.lower()
    if suffix not in SUPPORTED_EXTENSIONS:
        raise BackendError(
            f"Unsupported file format: '{suffix}'. "
            f"Supported: {', '.join(sorted(SUPPORTED_EXTENSIONS))}"
        )
    return suffix.lstrip(".")


__all__ = [
    "BackendError",
    "PagedBackend",
    "ReflowableBackend",
    "SUPPORTED_EXTENSIONS",
    "TextRange",
    "backend_kind",
]
