"""Common contract for every converter lane."""
import logging
import shutil
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from converter.artifacts import ArtifactStore, get_artifact_store
from converter.conversion.models import ConversionResult, Lane, ResultStatus, UploadedFile
from converter.errors import CapabilityError
from converter.options import ProcessingOptions

logger = logging.getLogger("converter.lanes")


def cleanup_upload(path: Path) -> None:
    """Remove a staged upload after processing."""
    try:
        if path.is_file():
            path.unlink()
        elif path.is_dir():
            shutil.rmtree(path, ignore_errors=True)
    except OSError as e:
        logger.warning("Could not remove upload %s: %s", path, e)


class BaseConverter(ABC):
    """
    Turns one staged file into zero or more artifacts. File-scoped failures become
    an error result; the staged input is removed whichever way it goes.
    """

    lane: Lane
    # When True a CapabilityError escapes process() and the input is kept so
    # the caller can hand the file to another lane.
    propagate_capability_errors = False

    def __init__(self, store: Optional[ArtifactStore] = None):
        self.store = store or get_artifact_store()

    def process(self, file: UploadedFile, options: ProcessingOptions) -> ConversionResult:
        result = ConversionResult(name=file.filename, lane=self.lane)
        keep_input = False
        try:
            result.original_size = file.path.stat().st_size
            self.convert(file, options, result)
        except CapabilityError as e:
            if self.propagate_capability_errors:
                keep_input = True
                raise
            logger.error("%s lane unavailable for %s: %s", self.lane.value, file.filename, e)
            result.status = ResultStatus.ERROR
            result.error = str(e)
        except Exception as e:
            logger.exception("Conversion failed for %s: %s", file.filename, e)
            result.status = ResultStatus.ERROR
            result.error = str(e) or type(e).__name__
        finally:
            if not keep_input:
                cleanup_upload(file.path)
        return result

    @abstractmethod
    def convert(self, file: UploadedFile, options: ProcessingOptions, result: ConversionResult) -> None:
        """Write artifacts and record each on `result`. Raise on failure."""
