"""Flat on-disk store for conversion outputs and archives."""
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Optional, Union

from converter import config
from converter.errors import ArtifactNotFound, InputError
from converter.security import generate_secure_filename, is_path_traversal_safe, is_within_directory, logical_name

logger = logging.getLogger("converter.artifacts")


@dataclass
class ArtifactRecord:
    path: Path
    created_at: float
    logical_name: str

    @property
    def filename(self) -> str:
        return self.path.name


class ArtifactStore:
    """
    One directory, no nesting. The file name is the only identifier; names are
    generated here and never taken from the caller.
    """

    def __init__(self, root: Union[str, Path, None] = None):
        self.root = Path(root) if root is not None else config.OUTPUT_DIR
        self.root.mkdir(parents=True, exist_ok=True)

    def allocate(self, source_name: str, fmt: str) -> ArtifactRecord:
        """Reserve a fresh path for an output of `source_name` in format `fmt`."""
        name = logical_name(source_name, fmt)
        return ArtifactRecord(
            path=self.root / generate_secure_filename(name),
            created_at=time.time(),
            logical_name=name,
        )

    def resolve(self, filename: str) -> Path:
        """Path of an existing artifact. Not-found is an expected outcome once the TTL has passed."""
        if not is_path_traversal_safe(filename):
            raise InputError(f"Invalid artifact name: {filename!r}")
        path = self.root / filename
        # A symlink planted in the store must not lead outside it
        if not is_within_directory(path, self.root):
            raise InputError(f"Invalid artifact name: {filename!r}")
        if not path.is_file():
            raise ArtifactNotFound(filename)
        return path

    def entries(self) -> Iterator[Path]:
        if not self.root.is_dir():
            return iter(())
        return self.root.iterdir()


_store: Optional[ArtifactStore] = None


def get_artifact_store() -> ArtifactStore:
    global _store
    if _store is None:
        _store = ArtifactStore()
    return _store
