"""
Excel data importer for Meu Carrim.
Handles .xlsx workbooks with one sheet per data type.
"""

import logging
from pathlib import Path
from datetime import datetime
from typing import Dict, List, Optional, Any, Callable

import openpyxl

from .validator import DataValidator
from .csv_importer import ImportResult, COLUMN_MAPPINGS, build_column_mapping

logger = logging.getLogger(__name__)

# Sheet name keywords used to guess what a sheet holds
SHEET_KEYWORDS = (
    ("price_history", ("price", "preco", "preço", "historico", "histórico")),
    ("category", ("categor",)),
    ("product", ("product", "produto")),
    ("market", ("market", "mercado", "loja")),
)


def detect_sheet_types(sheet_names: List[str]) -> Dict[str, str]:
    """Map sheet names to data types by keyword; unknown sheets are left out."""
    sheet_mapping = {}
    for name in sheet_names:
        lower_name = name.lower()
        for data_type, keywords in SHEET_KEYWORDS:
            if any(k in lower_name for k in keywords):
                sheet_mapping[name] = data_type
                break
    return sheet_mapping


class ExcelImporter:
    """
    Imports Excel data into Meu Carrim.
    Supports .xlsx files with multi-sheet handling.
    """

    def __init__(
        self,
        validator: Optional[DataValidator] = None,
    ):
        self.validator = validator or DataValidator()

    def validate_fn_for(self, data_type: str) -> Callable:
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
        sheet_name: Optional[str] = None,
        column_mapping: Optional[Dict[str, str]] = None,
    ) -> ImportResult:
        """Import categories from Excel."""
        return self.import_sheet(file_path, "category", sheet_name, column_mapping)

    def import_products(
        self,
        file_path: str,
        sheet_name: Optional[str] = None,
        column_mapping: Optional[Dict[str, str]] = None,
    ) -> ImportResult:
        """Import products from Excel."""
        return self.import_sheet(file_path, "product", sheet_name, column_mapping)

    def import_markets(
        self,
        file_path: str,
        sheet_name: Optional[str] = None,
        column_mapping: Optional[Dict[str, str]] = None,
    ) -> ImportResult:
        """Import markets from Excel."""
        return self.import_sheet(file_path, "market", sheet_name, column_mapping)

    def import_price_history(
        self,
        file_path: str,
        sheet_name: Optional[str] = None,
        column_mapping: Optional[Dict[str, str]] = None,
    ) -> ImportResult:
        """Import recorded purchase prices from Excel."""
        return self.import_sheet(
            file_path, "price_history", sheet_name, column_mapping
        )

    def import_sheet(
        self,
        file_path: str,
        data_type: str,
        sheet_name: Optional[str] = None,
        column_mapping: Optional[Dict[str, str]] = None,
        on_row_imported: Optional[Callable[[Dict], None]] = None,
    ) -> ImportResult:
        """
        Import one sheet of an Excel workbook.

        Args:
            file_path: Path to the Excel file
            data_type: category, product, market or price_history
            sheet_name: Optional sheet name (uses the active sheet if not specified)
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
            workbook = openpyxl.load_workbook(
                path,
                read_only=True,
                data_only=True,  # Computed values, not formulas
            )
        except Exception as e:
            result.success = False
            result.add_error(0, f"Error reading Excel file: {str(e)}")
            result.completed_at = datetime.now()
            logger.exception(f"Could not open workbook {file_path}")
            return result

        try:
            if sheet_name:
                if sheet_name not in workbook.sheetnames:
                    result.success = False
                    result.add_error(
                        0,
                        f"Sheet '{sheet_name}' not found. "
                        f"Available sheets: {workbook.sheetnames}"
                    )
                    result.completed_at = datetime.now()
                    return result
                sheet = workbook[sheet_name]
            else:
                sheet = workbook.active

            logger.info(f"Importing {data_type} from {file_path} (sheet: {sheet.title})")

            rows = sheet.iter_rows(values_only=True)
            header_row = next(rows, None)
            headers = [
                str(value).strip() if value is not None else ""
                for value in (header_row or ())
            ]

            if not any(headers):
                result.success = False
                result.add_error(0, "Excel sheet appears to be empty or has no headers")
                result.completed_at = datetime.now()
                return result

            mapping = build_column_mapping(headers, data_type, column_mapping)
            logger.debug(f"Column mapping: {mapping}")

            for row_num, row in enumerate(rows, start=2):
                # Skip completely empty rows
                if not any(cell is not None for cell in row):
                    result.records_skipped += 1
                    continue

                result.records_total += 1

                row_dict = {
                    headers[i]: cell for i, cell in enumerate(row) if i < len(headers)
                }
                mapped_data = self._map_row(row_dict, mapping)

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
                        f"Rejected {data_type} row {row_num} of sheet {sheet.title}"
                    )

                for warning in validation.warnings:
                    result.add_warning(row_num, warning.message)
        finally:
            workbook.close()

        result.completed_at = datetime.now()

        if result.records_failed > 0:
            result.success = False

        logger.info(
            f"Import complete: {result.records_success}/{result.records_total} records imported"
        )

        return result

    def _map_row(self, row: Dict[str, Any], mapping: Dict[str, str]) -> Dict[str, Any]:
        """
        Map an Excel row to data fields using the column mapping.
        Date cells stay datetime objects; the validator handles them directly.
        """
        mapped = {}
        for field_name, column in mapping.items():
            if column in row:
                value = row[column]
                if isinstance(value, str) and value.strip() == "":
                    value = None
                mapped[field_name] = value
        return mapped

    def get_sheet_names(self, file_path: str) -> List[str]:
        """Get list of sheet names in an Excel file."""
        path = Path(file_path)
        if not path.exists():
            return []

        try:
            workbook = openpyxl.load_workbook(path, read_only=True)
        except Exception as e:
            logger.error(f"Error reading sheet names: {e}")
            return []

        names = workbook.sheetnames
        workbook.close()
        return names

    def preview(
        self,
        file_path: str,
        data_type: str,
        sheet_name: Optional[str] = None,
        max_rows: int = 5,
        column_mapping: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        """Preview one sheet of an Excel file without importing."""
        path = Path(file_path)
        if not path.exists():
            return {"error": f"File not found: {file_path}"}

        try:
            workbook = openpyxl.load_workbook(path, read_only=True, data_only=True)
        except Exception as e:
            return {"error": str(e)}

        try:
            if sheet_name:
                if sheet_name not in workbook.sheetnames:
                    return {
                        "error": f"Sheet '{sheet_name}' not found",
                        "available_sheets": workbook.sheetnames,
                    }
                sheet = workbook[sheet_name]
            else:
                sheet = workbook.active

            rows = sheet.iter_rows(values_only=True)
            headers = [
                str(value).strip() if value is not None else ""
                for value in (next(rows, None) or ())
            ]
            mapping = build_column_mapping(headers, data_type, column_mapping)

            sample_rows = []
            total_rows = 0
            for row in rows:
                if not any(cell is not None for cell in row):
                    continue
                if total_rows < max_rows:
                    row_dict = {
                        headers[i]: cell for i, cell in enumerate(row) if i < len(headers)
                    }
                    sample_rows.append(self._map_row(row_dict, mapping))
                total_rows += 1

            return {
                "file_path": str(path),
                "sheet_name": sheet.title,
                "available_sheets": workbook.sheetnames,
                "headers": headers,
                "column_mapping": mapping,
                "unmapped_columns": [h for h in headers if h and h not in mapping.values()],
                "unmapped_fields": [
                    f for f in COLUMN_MAPPINGS.get(data_type, {}) if f not in mapping
                ],
                "sample_rows": sample_rows,
                "total_rows": total_rows,
            }
        finally:
            workbook.close()
