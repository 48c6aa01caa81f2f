"""Package stored artifacts into a single ZIP for download."""
import logging
import os
import secrets
import time
import zipfile
from pathlib import Path
from typing import Iterable, Optional

from converter.artifacts import ArtifactStore, get_artifact_store
from converter.errors import ArchiveError, ArtifactNotFound, InputError

logger = logging.getLogger("converter.archive")


def _archive_name() -> str:
    return f"archive-{int(time.time() * 1000)}-{secrets.token_hex(4)}.zip"


def build_archive(filenames: Iterable[str], store: Optional[ArtifactStore] = None) -> Path:
    """
    Zip the named artifacts into a new container inside the store and return its path.

    Unsafe or expired names are skipped. The container is complete and synced to
    disk before this returns; the caller deletes it once delivered.
    """
    store = store or get_artifact_store()
    names = list(dict.fromkeys(filenames or []))
    if not names:
        raise ArchiveError("No files specified")

    sources: list[Path] = []
    for name in names:
        try:
            sources.append(store.resolve(name))
        except (InputError, ArtifactNotFound) as e:
            logger.warning("Skipping %r in archive: %s", name, e)
    if not sources:
        raise ArchiveError("None of the requested files are available")

    archive_path = store.root / _archive_name()
    written = 0
    try:
        with open(archive_path, "wb") as fh:
            with zipfile.ZipFile(fh, "w", zipfile.ZIP_DEFLATED, compresslevel=9) as zf:
                for path in sources:
                    try:
                        zf.write(path, arcname=path.name)
                    except FileNotFoundError:
                        # Reaped after it was resolved
                        logger.warning("Skipping %r in archive: expired while bundling", path.name)
                        continue
                    written += 1
            fh.flush()
            os.fsync(fh.fileno())
    except OSError as e:
        archive_path.unlink(missing_ok=True)
        raise ArchiveError(f"Could not create archive: {e}") from e

    if not written:
        archive_path.unlink(missing_ok=True)
        raise ArchiveError("None of the requested files are available")

    logger.info("Created archive %s with %d file(s)", archive_path.name, written)
    return archive_path
