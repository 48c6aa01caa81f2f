"""TTL cleanup of the artifact store."""
import asyncio
import contextlib
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

from converter import config

logger = logging.getLogger("converter.reaper")


@dataclass
class SweepStats:
    cleaned: int = 0
    errors: int = 0


def sweep_expired(
    directory: Union[str, Path, None] = None,
    ttl_seconds: Optional[float] = None,
    now: Optional[float] = None,
) -> SweepStats:
    """Delete regular files whose mtime is older than the TTL. Per-entry failures are counted, not raised."""
    directory = Path(directory) if directory is not None else config.OUTPUT_DIR
    ttl = config.ARTIFACT_TTL_SECONDS if ttl_seconds is None else ttl_seconds
    now = time.time() if now is None else now
    stats = SweepStats()

    try:
        entries = list(directory.iterdir())
    except FileNotFoundError:
        return stats
    except OSError as e:
        logger.error("Cleanup could not list %s: %s", directory, e)
        stats.errors += 1
        return stats

    for entry in entries:
        try:
            st = entry.stat()
            if entry.is_dir():
                continue
            age = now - st.st_mtime
            if age > ttl:
                entry.unlink()
                stats.cleaned += 1
                logger.debug("Deleted expired file: %s (age: %ds)", entry.name, age)
        except FileNotFoundError:
            # Already gone: downloaded archive or a concurrent sweep
            continue
        except OSError as e:
            stats.errors += 1
            logger.error("Error processing file %s: %s", entry.name, e)

    if stats.cleaned or stats.errors:
        logger.info("Cleanup completed: %d files deleted, %d errors", stats.cleaned, stats.errors)
    return stats


class RetentionReaper:
    """Periodic sweep on the running event loop; the sweep itself runs in a worker thread."""

    def __init__(
        self,
        directory: Union[str, Path, None] = None,
        ttl_seconds: Optional[float] = None,
        interval_seconds: Optional[float] = None,
    ):
        self.directory = Path(directory) if directory is not None else config.OUTPUT_DIR
        self.ttl_seconds = config.ARTIFACT_TTL_SECONDS if ttl_seconds is None else ttl_seconds
        self.interval_seconds = config.CLEANUP_INTERVAL_SECONDS if interval_seconds is None else interval_seconds
        self._stop: Optional[asyncio.Event] = None
        self._task: Optional[asyncio.Task] = None
        self.sweeps = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        logger.info(
            "Starting file cleanup scheduler (interval: %ss, expiry: %ss)",
            self.interval_seconds, self.ttl_seconds,
        )
        self._stop = asyncio.Event()
        self._task = asyncio.get_running_loop().create_task(self._run(self._stop))

    async def _run(self, stop: asyncio.Event) -> None:
        while not stop.is_set():
            try:
                await asyncio.to_thread(sweep_expired, self.directory, self.ttl_seconds)
            except Exception as e:
                logger.exception("Cleanup sweep failed: %s", e)
            self.sweeps += 1
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(stop.wait(), timeout=self.interval_seconds)

    async def stop(self) -> None:
        """Stop scheduling sweeps. A sweep already running in its thread finishes on its own."""
        if self._stop is not None:
            self._stop.set()
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
            logger.info("File cleanup scheduler stopped")
