"""Assign each staged image to a converter lane."""
import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional, Protocol

from converter import config
from converter.conversion.models import UploadedFile

logger = logging.getLogger("converter.router")


class SpecialtyCapability(Protocol):
    def is_available(self) -> bool: ...


@dataclass(frozen=True)
class RouterConfig:
    specialty_enabled: bool = True
    vector_extensions: frozenset = frozenset(config.VECTOR_EXTENSIONS)
    specialty_extensions: frozenset = frozenset(config.SPECIALTY_EXTENSIONS)

    @classmethod
    def from_settings(cls) -> "RouterConfig":
        return cls(specialty_enabled=config.SPECIALTY_ENABLED)


@dataclass
class RoutedFile:
    index: int  # position in the caller's batch
    file: UploadedFile


@dataclass
class RoutingPlan:
    vector: list[RoutedFile] = field(default_factory=list)
    specialty: list[RoutedFile] = field(default_factory=list)
    raster: list[RoutedFile] = field(default_factory=list)
    specialty_available: Optional[bool] = None  # None when no probe was needed

    def __len__(self) -> int:
        return len(self.vector) + len(self.specialty) + len(self.raster)


class FormatRouter:
    """
    Routing is by extension; content was already checked upstream. Specialty
    candidates fall through to the raster lane whenever the specialty tool is
    disabled, not preferred by the caller or not installed.
    """

    def __init__(self, router_config: RouterConfig, capability: SpecialtyCapability):
        self.config = router_config
        self.capability = capability

    def _probe(self) -> bool:
        try:
            return bool(self.capability.is_available())
        except Exception as e:
            logger.warning("Specialty capability probe failed, using raster lane: %s", e)
            return False

    def route(self, files: Iterable[UploadedFile], prefer_specialty: bool = True) -> RoutingPlan:
        plan = RoutingPlan()
        candidates: list[RoutedFile] = []
        for index, file in enumerate(files):
            entry = RoutedFile(index, file)
            ext = file.extension
            if ext in self.config.vector_extensions:
                plan.vector.append(entry)
            elif ext in self.config.specialty_extensions:
                candidates.append(entry)
            else:
                plan.raster.append(entry)

        if candidates:
            if self.config.specialty_enabled and prefer_specialty:
                plan.specialty_available = self._probe()
            else:
                plan.specialty_available = False
            if plan.specialty_available:
                plan.specialty.extend(candidates)
            else:
                if self.config.specialty_enabled and prefer_specialty:
                    logger.warning("ImageMagick not available, using raster lane for %d file(s)", len(candidates))
                plan.raster.extend(candidates)
                plan.raster.sort(key=lambda e: e.index)
        return plan
