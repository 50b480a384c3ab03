"""Save step: where finished artifacts are handed off."""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Protocol

from invoice_export.core.config import settings
from invoice_export.core.observability import trace_function

logger = logging.getLogger(__name__)

MEDIA_TYPES = {
    "csv": "text/csv; charset=utf-8",
    "pdf": "application/pdf",
    "zip": "application/zip",
}


def media_type_for(filename: str) -> str:
    extension = filename.rsplit(".", 1)[-1].lower()
    return MEDIA_TYPES.get(extension, "application/octet-stream")


@dataclass
class SavedArtifact:
    """A file handed to the save mechanism."""
    filename: str
    media_type: str
    size_bytes: int
    location: str


class ArtifactSink(Protocol):
    def save(self, filename: str, payload: bytes) -> SavedArtifact: ...


class FileSystemSink:
    """Writes artifacts into a directory."""

    def __init__(self, directory: Optional[Path] = None) -> None:
        self.directory = Path(directory or settings.EXPORT_DIR)

    @trace_function("filesystem_sink.save")
    def save(self, filename: str, payload: bytes) -> SavedArtifact:
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self.directory / filename
        path.write_bytes(payload)
        logger.info("Saved export artifact", extra={"path": str(path), "size_bytes": len(payload)})
        return SavedArtifact(
            filename=filename,
            media_type=media_type_for(filename),
            size_bytes=len(payload),
            location=str(path),
        )


class MemorySink:
    """Holds artifacts in memory for download endpoints and tests."""

    def __init__(self) -> None:
        self.files: Dict[str, bytes] = {}

    def save(self, filename: str, payload: bytes) -> SavedArtifact:
        artifact = SavedArtifact(
            filename=filename,
            media_type=media_type_for(filename),
            size_bytes=len(payload),
            location=f"memory://{filename}",
        )
        self.files[filename] = payload
        return artifact

    def get(self, filename: str) -> Optional[bytes]:
        return self.files.get(filename)

    def discard(self, filename: str) -> None:
        self.files.pop(filename, None)

    def clear(self) -> None:
        self.files.clear()
