from .service import ConversionService, get_conversion_service
from .models import ConversionResult, ProcessedFile, UploadedFile

__all__ = ["ConversionService", "get_conversion_service", "ConversionResult", "ProcessedFile", "UploadedFile"]
