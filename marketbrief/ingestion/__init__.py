"""News normalization and storage pipeline."""

from .pipeline import NORMALIZERS, IngestionPipeline, load_payload_file

__all__ = ["NORMALIZERS", "IngestionPipeline", "load_payload_file"]
