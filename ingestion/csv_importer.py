"""
CSV data importer for Meu Carrim.
Handles bulk import of categories, products, markets and price history.
"""

import csv
import logging
from pathlib import Path
from datetime import datetime
from typing import Dict, List, Optional, Any, Callable
from dataclasses import dataclass, field

from .validator import DataValidator

logger = logging.getLogger(__name__)


@dataclass
class ImportResult:
    """Results from a file import operation."""

    success: bool
    source_file: str
    records_total: int = 0
    records_processed: int = 0
    records_success: int = 0
    records_failed: int = 0
    records_skipped: int = 0
    errors: List[Dict] = field(default_factory=list)
    warnings: List[Dict] = field(default_factory=list)
    imported_data: List[Dict] = field(default_factory=list)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    def add_error(self, row: int, message: str, data: Optional[Dict] = None):
        """Add an error to the import result."""
        self.errors.append({
            "row": row,
            "message": message,
            "data": data,
        })

    def add_warning(self, row: int, message: str):
        """Add a warning to the import result."""
        self.warnings.append({
            "row": row,
            "message": message,
        })

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "source_file": self.source_file,
            "records_total": self.records_total,
            "records_processed": self.records_processed,
            "records_success": self.records_success,
            "records_failed": self.records_failed,
            "records_skipped": self.records_skipped,
            "error_count": len(self.errors),
            "warning_count": len(self.warnings),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_seconds": (
                (self.completed_at - self.started_at).total_seconds()
                if self.started_at and self.completed_at else None
            ),
        }


# Column aliases per data type, English and Portuguese headers
COLUMN_MAPPINGS = {
    "category": {
        "id": ["id", "category_id", "categoria_id"],
        "name": ["name", "nome", "category", "categoria"],
        "description": ["description", "descricao", "descrição"],
        "color": ["color", "cor"],
        "icon": ["icon", "icone", "ícone"],
    },
    "product": {
        "id": ["id", "product_id", "produto_id"],
        "name": ["name", "nome", "product", "produto", "product_name"],
        "description": ["description", "descricao", "descrição"],
        "image": ["image", "imagem", "image_url"],
        "category_id": ["category_id", "categoria_id"],
        "category_name": ["category", "categoria", "category_name"],
    },
    "market": {
        "id": ["id", "market_id", "mercado_id"],
        "name": ["name", "nome", "market", "mercado", "market_name"],
        "address": ["address", "endereco", "endereço"],
        "city": ["city", "cidade"],
        "state": ["state", "estado", "uf"],
        "zip_code": ["zip_code", "zip", "cep", "postal_code"],
        "latitude": ["latitude", "lat"],
        "longitude": ["longitude", "lon", "lng"],
    },
    "price_history": {
        "id": ["id", "price_id"],
        "product_id": ["product_id", "produto_id"],
        "product_name": ["product", "produto", "product_name", "nome_produto"],
        "market_id": ["market_id", "mercado_id"],
        "market_name": ["market", "mercado", "market_name", "nome_mercado"],
        "city": ["city", "cidade"],
        "price": ["price", "preco", "preço", "valor"],
        "purchase_date": ["purchase_date", "date", "data", "data_compra"],
    },
}


class CSVImporter:
    """
    Imports CSV data into Meu Carrim.
    Supports flexible column mapping and validation.
    """

    def __init__(
        self,
        validator: Optional[DataValidator] = None,
        encoding: str = "utf-8-sig",
        delimiter: str = ",",
    ):
        self.validator = validator or DataValidator()
        self.encoding = encoding
        self.delimiter = delimiter

    def validate_fn_for(self, data_type: str) -> Callable:
        """Validation function for a data type."""
        validators = {
            "category": self.validator.validate_category,
            "product": self.validator.validate_product,
            "market": self.validator.validate_market,
            "price_history": self.validator.validate_price_observation,
        }
        if data_type not in validators:
            raise ValueError(f"Unknown data type: {data_type}")
        return validators[data_type]

    def import_categories(
        self,
        file_path: str,
        column_mapping: Optional[Dict[str, str]] = None,
        on_row_imported: Optional[Callable[[Dict], None]] = None,
    ) -> ImportResult:
        """Import categories from CSV."""
        return self._import_file(
            file_path, "category", column_mapping, on_row_imported
        )

    def import_products(
        self,
        file_path: str,
        column_mapping: Optional[Dict[str, str]] = None,
        on_row_imported: Optional[Callable[[Dict], None]] = None,
    ) -> ImportResult:
        """Import products from CSV."""
        return self._import_file(
            file_path, "product", column_mapping, on_row_imported
        )

    def import_markets(
        self,
        file_path: str,
        column_mapping: Optional[Dict[str, str]] = None,
        on_row_imported: Optional[Callable[[Dict], None]] = None,
    ) -> ImportResult:
        """Import markets from CSV."""
        return self._import_file(
            file_path, "market", column_mapping, on_row_imported
        )

    def import_price_history(
        self,
        file_path: str,
        column_mapping: Optional[Dict[str, str]] = None,
        on_row_imported: Optional[Callable[[Dict], None]] = None,
    ) -> ImportResult:
        """Import recorded purchase prices from CSV."""
        return self._import_file(
            file_path, "price_history", column_mapping, on_row_imported
        )

    def import_file(
        self,
        file_path: str,
        data_type: str,
        column_mapping: Optional[Dict[str, str]] = None,
    ) -> ImportResult:
        """Import any supported data type from CSV."""
        return self._import_file(file_path, data_type, column_mapping)

    def _import_file(
        self,
        file_path: str,
        data_type: str,
        column_mapping: Optional[Dict[str, str]] = None,
        on_row_imported: Optional[Callable[[Dict], None]] = None,
    ) -> ImportResult:
        """
        Generic file import method.

        Args:
            file_path: Path to the CSV file
            data_type: category, product, market or price_history
            column_mapping: Optional custom column mapping
            on_row_imported: Optional callback for each imported row

        Returns:
            ImportResult with details of the import
        """
        validate_fn = self.validate_fn_for(data_type)
        result = ImportResult(
            success=True,
            source_file=str(file_path),
            started_at=datetime.now(),
        )

        path = Path(file_path)
        if not path.exists():
            result.success = False
            result.add_error(0, f"File not found: {file_path}")
            result.completed_at = datetime.now()
            return result

        try:
            with open(path, "r", encoding=self.encoding, newline="") as f:
                # Detect dialect if possible
                sample = f.read(4096)
                f.seek(0)

                try:
                    dialect = csv.Sniffer().sniff(sample, delimiters=",;\t|")
                except csv.Error:
                    dialect = None

                reader = csv.DictReader(
                    f,
                    delimiter=dialect.delimiter if dialect else self.delimiter,
                )

                headers = reader.fieldnames
                if not headers:
                    result.success = False
                    result.add_error(0, "CSV file appears to be empty or has no headers")
                    result.completed_at = datetime.now()
                    return result

                mapping = self._build_column_mapping(
                    headers, data_type, column_mapping
                )

                logger.info(f"Importing {data_type} from {file_path}")
                logger.debug(f"Column mapping: {mapping}")

                for row_num, row in enumerate(reader, start=2):  # Header is row 1
                    mapped_data = self._map_row(row, mapping)
                    if not any(v is not None for v in mapped_data.values()):
                        result.records_skipped += 1
                        continue

                    result.records_total += 1

                    validation = validate_fn(mapped_data, row_index=row_num)
                    result.records_processed += 1

                    if validation.is_valid:
                        final_data = validation.cleaned_data or mapped_data
                        result.imported_data.append(final_data)
                        result.records_success += 1

                        if on_row_imported:
                            on_row_imported(final_data)
                    else:
                        result.records_failed += 1
                        for error in validation.errors:
                            result.add_error(row_num, error.message, mapped_data)
                        logger.warning(
                            f"Rejected {data_type} row {row_num}: "
                            f"{'; '.join(e.message for e in validation.errors)}"
                        )

                    for warning in validation.warnings:
                        result.add_warning(row_num, warning.message)

        except csv.Error as e:
            result.success = False
            result.add_error(0, f"CSV parsing error: {str(e)}")
        except UnicodeDecodeError as e:
            result.success = False
            result.add_error(0, f"Encoding error: {str(e)}. Try a different encoding.")

        result.completed_at = datetime.now()

        if result.records_failed > 0:
            result.success = False

        logger.info(
            f"Import complete: {result.records_success}/{result.records_total} records imported"
        )

        return result

    def _build_column_mapping(
        self,
        headers: List[str],
        data_type: str,
        custom_mapping: Optional[Dict[str, str]] = None,
    ) -> Dict[str, str]:
        """
        Build a mapping from CSV columns to data fields.

        Returns:
            Dict mapping field names to CSV column names
        """
        return build_column_mapping(headers, data_type, custom_mapping)

    def _map_row(self, row: Dict[str, Any], mapping: Dict[str, str]) -> Dict[str, Any]:
        """Map a CSV row to data fields using the column mapping."""
        mapped = {}
        for field_name, column in mapping.items():
            if column in row:
                value = row[column]
                if isinstance(value, str) and value.strip() == "":
                    value = None
                mapped[field_name] = value
        return mapped

    def preview(
        self,
        file_path: str,
        data_type: str,
        max_rows: int = 5,
        column_mapping: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        """
        Preview a CSV file without importing.

        Returns:
            Dict with headers, the resolved column mapping, sample rows and the
            total row count, or {"error": ...}
        """
        path = Path(file_path)
        if not path.exists():
            return {"error": f"File not found: {file_path}"}

        try:
            with open(path, "r", encoding=self.encoding, newline="") as f:
                reader = csv.DictReader(f, delimiter=self.delimiter)
                headers = reader.fieldnames or []

                mapping = self._build_column_mapping(
                    headers, data_type, column_mapping
                )

                sample_rows = []
                total_rows = 0
                for row in reader:
                    if total_rows < max_rows:
                        sample_rows.append(self._map_row(row, mapping))
                    total_rows += 1

        except (OSError, csv.Error, UnicodeDecodeError) as e:
            return {"error": str(e)}

        return {
            "file_path": str(path),
            "headers": headers,
            "column_mapping": mapping,
            "unmapped_columns": [h for h in headers if h not in mapping.values()],
            "unmapped_fields": [
                f for f in COLUMN_MAPPINGS.get(data_type, {}) if f not in mapping
            ],
            "sample_rows": sample_rows,
            "total_rows": total_rows,
        }


def _normalize_header(header: Any) -> str:
    return str(header).lower().strip().replace(" ", "_")


def build_column_mapping(
    headers: List[Any],
    data_type: str,
    custom_mapping: Optional[Dict[str, str]] = None,
) -> Dict[str, str]:
    """
    Resolve which column feeds which field. The first alias found among the
    headers wins; a column already claimed by another field is not reused.
    """
    if custom_mapping:
        return dict(custom_mapping)

    mapping = {}
    claimed = set()
    normalized_headers = {_normalize_header(h): h for h in headers if h}

    for field_name, aliases in COLUMN_MAPPINGS.get(data_type, {}).items():
        for alias in aliases:
            column = normalized_headers.get(_normalize_header(alias))
            if column is not None and column not in claimed:
                mapping[field_name] = column
                claimed.add(column)
                break

    return mapping
