"""CME Tracker - External Service Clients"""
from .drive_bridge import (
    DriveBridgeClient, DriveBridgeError, UploadedFile,
    extract_file_id_from_url, transform_drive_url, get_drive_bridge,
)
from .gemini import (
    GeminiClient, ExtractedCertificate, AIServiceError, AINotConfiguredError, ExtractionError,
    mask_api_key, parse_extraction,
)

__all__ = [
    "DriveBridgeClient", "DriveBridgeError", "UploadedFile",
    "extract_file_id_from_url", "transform_drive_url", "get_drive_bridge",
    "GeminiClient", "ExtractedCertificate", "AIServiceError", "AINotConfiguredError", "ExtractionError",
    "mask_api_key", "parse_extraction",
]
