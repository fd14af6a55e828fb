"""Data ingestion module for Meu Carrim."""

from .csv_importer import CSVImporter, ImportResult
from .excel_importer import ExcelImporter
from .validator import DataValidator, ValidationResult
from .pipeline import IngestionPipeline, PipelineResult

__all__ = [
    "CSVImporter",
    "ImportResult",
    "ExcelImporter",
    "DataValidator",
    "ValidationResult",
    "IngestionPipeline",
    "PipelineResult",
]
