"""Conversion request/response models."""
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional


class ResultStatus(str, Enum):
    SUCCESS = "success"
    ERROR = "error"


class MediaCategory(str, Enum):
    IMAGE = "image"
    VIDEO = "video"


class Lane(str, Enum):
    RASTER = "raster"
    VECTOR = "vector"
    SPECIALTY = "specialty"
    VIDEO = "video"


def compute_savings(original_size: int, output_size: int) -> float:
    """Percent reduction rounded to two decimals, floored at 0 when the output is not smaller."""
    if original_size <= 0 or output_size >= original_size:
        return 0.0
    return round((original_size - output_size) / original_size * 100, 2)


@dataclass
class UploadedFile:
    """A staged upload. Consumed exactly once by the pipeline."""

    filename: str  # as supplied by the caller
    path: Path  # staging location
    size: int = 0

    @property
    def extension(self) -> str:
        return Path(self.filename).suffix.lower()


@dataclass
class ProcessedFile:
    format: str
    filename: str  # artifact id in the store
    name: str  # download name
    size: int
    savings: float

    def to_dict(self) -> dict:
        return {
            "format": self.format,
            "filename": self.filename,
            "name": self.name,
            "size": self.size,
            "savings": self.savings,
        }


@dataclass
class ConversionResult:
    name: str
    original_size: int = 0
    processed_files: list[ProcessedFile] = field(default_factory=list)
    status: ResultStatus = ResultStatus.SUCCESS
    error: Optional[str] = None
    lane: Optional[Lane] = None

    @classmethod
    def failed(cls, name: str, error: str, original_size: int = 0, lane: Optional[Lane] = None) -> "ConversionResult":
        return cls(name=name, original_size=original_size, status=ResultStatus.ERROR, error=error, lane=lane)

    @property
    def ok(self) -> bool:
        return self.status == ResultStatus.SUCCESS

    @property
    def output_size(self) -> int:
        return sum(p.size for p in self.processed_files)

    def add_output(self, fmt: str, path: Path, name: str) -> ProcessedFile:
        size = path.stat().st_size
        processed = ProcessedFile(
            format=fmt,
            filename=path.name,
            name=name,
            size=size,
            savings=compute_savings(self.original_size, size),
        )
        self.processed_files.append(processed)
        return processed

    def to_dict(self) -> dict:
        out = {
            "name": self.name,
            "originalSize": self.original_size,
            "processedFiles": [p.to_dict() for p in self.processed_files],
            "status": self.status.value,
        }
        if self.error:
            out["error"] = self.error
        if self.lane:
            out["processor"] = self.lane.value
        return out
