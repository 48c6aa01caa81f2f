"""Conversion pipeline: content checks, routing, parallel lanes and ordered results."""
import logging
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Any, Optional, Sequence, Union

from converter import config
from converter.archive import build_archive
from converter.artifacts import ArtifactStore, get_artifact_store
from converter.content import ContentCheck, ContentValidator, get_content_validator
from converter.conversion.aggregate import ResultAggregator
from converter.conversion.base import BaseConverter, cleanup_upload
from converter.conversion.models import ConversionResult, MediaCategory, UploadedFile
from converter.conversion.raster import RasterConverter
from converter.conversion.router import FormatRouter, RoutedFile, RouterConfig
from converter.conversion.specialty import ImageMagickCapability, SpecialtyConverter
from converter.conversion.vector import VectorConverter
from converter.conversion.video import VideoConverter
from converter.errors import CapabilityError, ContentValidationError, InputError
from converter.options import OptionsValidation, ProcessingOptions, validate_options
from converter.retention import SweepStats, sweep_expired

logger = logging.getLogger("converter.service")


class ConversionService:
    """Runs batches through the lanes. File-scoped problems end up in results, never raised."""

    def __init__(
        self,
        store: Optional[ArtifactStore] = None,
        validator: Optional[ContentValidator] = None,
        router: Optional[FormatRouter] = None,
        capability: Optional[ImageMagickCapability] = None,
        max_workers: int = config.MAX_WORKERS,
    ):
        self.store = store or get_artifact_store()
        self.validator = validator or get_content_validator()
        self.capability = capability or ImageMagickCapability()
        self.router = router or FormatRouter(RouterConfig.from_settings(), self.capability)
        self.raster = RasterConverter(self.store)
        self.vector = VectorConverter(self.store)
        self.specialty = SpecialtyConverter(self.store, self.capability)
        self.video = VideoConverter(self.store)
        self._executor = ThreadPoolExecutor(max_workers=max_workers)
        logger.info("ConversionService initialized with max_workers=%s", max_workers)

    def validate_content(self, staged_path: Union[str, Path], claimed_category: str) -> ContentCheck:
        return self.validator.validate(staged_path, claimed_category)

    def validate_options(self, options: Any, category: str) -> OptionsValidation:
        return validate_options(options, category)

    def _reject(self, file: UploadedFile, error: str) -> ConversionResult:
        try:
            size = file.path.stat().st_size
        except OSError:
            size = file.size
        logger.warning("Rejected %s: %s", file.filename, error)
        cleanup_upload(file.path)
        return ConversionResult.failed(file.filename, error, original_size=size)

    def _run_specialty(
        self,
        entries: list[RoutedFile],
        options: ProcessingOptions,
        aggregator: ResultAggregator,
    ) -> None:
        """Sequential; the first tool-level failure sends that file and the rest to the raster lane."""
        for pos, entry in enumerate(entries):
            try:
                aggregator.add(entry.index, self.specialty.process(entry.file, options))
            except CapabilityError as e:
                remaining = entries[pos:]
                logger.warning(
                    "ImageMagick processing failed, falling back to raster lane for %d file(s): %s",
                    len(remaining), e,
                )
                for fallback in remaining:
                    aggregator.add(fallback.index, self.raster.process(fallback.file, options))
                return

    def process_batch(self, files: Sequence[UploadedFile], options: ProcessingOptions) -> list[ConversionResult]:
        """Convert every file; results come back in input order, one per file."""
        if not files:
            raise InputError("No files provided")

        aggregator = ResultAggregator(len(files))
        accepted: list[UploadedFile] = []
        positions: list[int] = []
        for index, file in enumerate(files):
            check = self.validator.validate(file.path, MediaCategory.IMAGE.value)
            if check.valid:
                accepted.append(file)
                positions.append(index)
            else:
                aggregator.add(index, self._reject(file, check.error or "File rejected"))

        plan = self.router.route(accepted, prefer_specialty=options.use_specialty)
        for entry in (*plan.vector, *plan.specialty, *plan.raster):
            entry.index = positions[entry.index]

        futures: dict[Future, list[RoutedFile]] = {}
        for entry in plan.vector:
            futures[self._executor.submit(self._convert_into, self.vector, entry, options, aggregator)] = [entry]
        for entry in plan.raster:
            futures[self._executor.submit(self._convert_into, self.raster, entry, options, aggregator)] = [entry]
        if plan.specialty:
            futures[self._executor.submit(self._run_specialty, plan.specialty, options, aggregator)] = plan.specialty

        for future in as_completed(futures):
            try:
                future.result()
            except Exception as e:
                logger.exception("Lane task failed: %s", e)
                missing = set(aggregator.missing())
                for entry in futures[future]:
                    if entry.index in missing:
                        cleanup_upload(entry.file.path)
                        aggregator.add(entry.index, ConversionResult.failed(entry.file.filename, str(e)))

        results = aggregator.results()
        ok = sum(1 for r in results if r.ok)
        logger.info("Batch finished: %d file(s), %d succeeded, %d failed", len(results), ok, len(results) - ok)
        return results

    @staticmethod
    def _convert_into(
        converter: BaseConverter,
        entry: RoutedFile,
        options: ProcessingOptions,
        aggregator: ResultAggregator,
    ) -> None:
        aggregator.add(entry.index, converter.process(entry.file, options))

    def process_single(self, file: UploadedFile, options: ProcessingOptions) -> ConversionResult:
        """Video lane. A content rejection is a request failure, not a result."""
        check = self.validator.validate(file.path, MediaCategory.VIDEO.value)
        if not check.valid:
            cleanup_upload(file.path)
            message = check.error or "File rejected"
            raise ContentValidationError(message, [message])
        return self.video.process(file, options)

    def build_archive(self, filenames: Sequence[str]) -> Path:
        return build_archive(filenames, self.store)

    def sweep_expired(self, ttl_seconds: Optional[int] = None) -> SweepStats:
        return sweep_expired(self.store.root, ttl_seconds)

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False)


# Singleton
_conversion_service: Optional[ConversionService] = None


def get_conversion_service() -> ConversionService:
    global _conversion_service
    if _conversion_service is None:
        _conversion_service = ConversionService()
    return _conversion_service
