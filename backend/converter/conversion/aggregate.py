"""Merge per-lane results back into the caller's order."""
import threading
from dataclasses import dataclass
from typing import Iterable

from converter.conversion.models import ConversionResult, compute_savings


class ResultAggregator:
    """Thread-safe; lanes may report in any order."""

    def __init__(self, expected: int):
        self.expected = expected
        self._results: dict[int, ConversionResult] = {}
        self._lock = threading.Lock()

    def add(self, index: int, result: ConversionResult) -> None:
        if not 0 <= index < self.expected:
            raise IndexError(f"Result index {index} outside batch of {self.expected}")
        with self._lock:
            if index in self._results:
                raise ValueError(f"Duplicate result for batch index {index}")
            self._results[index] = result

    def missing(self) -> list[int]:
        with self._lock:
            return [i for i in range(self.expected) if i not in self._results]

    def results(self) -> list[ConversionResult]:
        with self._lock:
            missing = [i for i in range(self.expected) if i not in self._results]
            if missing:
                raise RuntimeError(f"No result recorded for batch index(es) {missing}")
            return [self._results[i] for i in range(self.expected)]


@dataclass
class BatchSummary:
    files: int
    succeeded: int
    failed: int
    original_size: int
    output_size: int
    savings: float

    def to_dict(self) -> dict:
        return {
            "files": self.files,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "originalSize": self.original_size,
            "outputSize": self.output_size,
            "savings": self.savings,
        }


def summarize(results: Iterable[ConversionResult]) -> BatchSummary:
    """Totals over every result; output bytes count every artifact, so multi-format batches can show no savings."""
    results = list(results)
    original = sum(r.original_size for r in results)
    output = sum(r.output_size for r in results)
    succeeded = sum(1 for r in results if r.ok)
    return BatchSummary(
        files=len(results),
        succeeded=succeeded,
        failed=len(results) - succeeded,
        original_size=original,
        output_size=output,
        savings=compute_savings(original, output),
    )
