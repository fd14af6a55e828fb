"""
Main data ingestion pipeline for Meu Carrim.
Orchestrates CSV and Excel imports with database persistence.
"""

import logging
from datetime import datetime
from typing import Dict, List, Optional, Any, Callable
from dataclasses import dataclass, field
import json

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from database.errors import InvalidArgumentError, NotFoundError
from database.models import (
    Base,
    get_engine,
    get_session,
    Category,
    Product,
    Market,
    PriceHistory,
    IngestionLog,
)
from database.stores import MarketStore, ProductStore, match_name
from .csv_importer import CSVImporter, ImportResult
from .excel_importer import ExcelImporter, detect_sheet_types
from .validator import DataValidator

logger = logging.getLogger(__name__)

# Reference data first so price rows can resolve their product and market
IMPORT_ORDER = ("category", "product", "market", "price_history")


class RowRejected(Exception):
    """A valid-looking row that cannot be persisted (e.g. unknown product)."""


@dataclass
class PipelineResult:
    """Results from a pipeline operation."""

    success: bool
    operation: str
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    records_total: int = 0
    records_imported: int = 0
    records_failed: int = 0
    records_skipped: int = 0
    errors: List[Dict] = field(default_factory=list)
    warnings: List[Dict] = field(default_factory=list)
    log_id: Optional[str] = None

    @property
    def status(self) -> str:
        """Ingestion log status for this result."""
        if not self.success and self.records_imported == 0:
            return "failed"
        if self.records_failed > 0:
            return "partial"
        return "completed"

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "operation": self.operation,
            "status": self.status,
            "log_id": self.log_id,
            "records_total": self.records_total,
            "records_imported": self.records_imported,
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


class IngestionPipeline:
    """
    Pipeline for bulk-loading grocery data.
    Validates file rows, persists them and records an IngestionLog per run.
    """

    def __init__(
        self,
        database_url: Optional[str] = None,
        validator: Optional[DataValidator] = None,
        session: Optional[Session] = None,
    ):
        self.database_url = database_url
        self.validator = validator or DataValidator()

        self.csv_importer = CSVImporter(validator=self.validator)
        self.excel_importer = ExcelImporter(validator=self.validator)

        self._engine = None
        self._session = session
        self._owns_session = session is None

    def _get_engine(self):
        """Get or create database engine."""
        if self._engine is None:
            self._engine = get_engine(self.database_url)
        return self._engine

    def _get_session(self) -> Session:
        """Get or create database session."""
        if self._session is None:
            self._session = get_session(self._get_engine())
        return self._session

    def init_database(self) -> bool:
        """Create the schema on the pipeline's database."""
        try:
            Base.metadata.create_all(bind=self._get_session().get_bind())
            logger.info("Database initialized successfully")
            return True
        except SQLAlchemyError as e:
            logger.error(f"Failed to initialize database: {e}")
            return False

    # ==========================================================================
    # INGESTION LOG
    # ==========================================================================

    def _create_ingestion_log(
        self,
        source_type: str,
        source_name: str,
        data_type: str,
    ) -> IngestionLog:
        """Create an ingestion log entry."""
        session = self._get_session()
        log = IngestionLog(
            source_type=source_type,
            source_name=source_name,
            data_type=data_type,
            status="processing",
            started_at=datetime.now(),
        )
        session.add(log)
        session.commit()
        return log

    def _update_ingestion_log(
        self,
        log: IngestionLog,
        result: PipelineResult,
        status: Optional[str] = None,
    ):
        """Copy a finished result onto its ingestion log entry."""
        session = self._get_session()
        log.status = status or result.status
        log.records_total = result.records_total
        log.records_success = result.records_imported
        log.records_failed = result.records_failed
        log.records_skipped = result.records_skipped
        log.completed_at = datetime.now()

        if result.errors:
            log.error_messages = json.dumps(result.errors[:50], default=str)
        if result.warnings:
            log.warnings = json.dumps(result.warnings[:50], default=str)

        session.commit()

    # ==========================================================================
    # PUBLIC IMPORTS
    # ==========================================================================

    def import_categories_from_csv(
        self,
        file_path: str,
        column_mapping: Optional[Dict[str, str]] = None,
    ) -> PipelineResult:
        """Import categories from a CSV file."""
        return self.import_from_csv(file_path, "category", column_mapping)

    def import_products_from_csv(
        self,
        file_path: str,
        column_mapping: Optional[Dict[str, str]] = None,
    ) -> PipelineResult:
        """Import products from a CSV file."""
        return self.import_from_csv(file_path, "product", column_mapping)

    def import_markets_from_csv(
        self,
        file_path: str,
        column_mapping: Optional[Dict[str, str]] = None,
    ) -> PipelineResult:
        """Import markets from a CSV file."""
        return self.import_from_csv(file_path, "market", column_mapping)

    def import_price_history_from_csv(
        self,
        file_path: str,
        column_mapping: Optional[Dict[str, str]] = None,
    ) -> PipelineResult:
        """
        Import recorded purchase prices from a CSV file.

        Rows may reference products and markets by id or by name. Rows whose
        product or market cannot be found are counted as failed.
        """
        return self.import_from_csv(file_path, "price_history", column_mapping)

    def import_from_csv(
        self,
        file_path: str,
        data_type: str,
        column_mapping: Optional[Dict[str, str]] = None,
    ) -> PipelineResult:
        """
        Import one data type from a CSV file.

        Args:
            file_path: Path to the CSV file
            data_type: category, product, market or price_history
            column_mapping: Optional custom column mapping

        Returns:
            PipelineResult with import details
        """
        return self._run(
            source_type="csv",
            source_name=str(file_path),
            data_type=data_type,
            load=lambda: self.csv_importer.import_file(
                file_path, data_type, column_mapping
            ),
        )

    def import_from_excel(
        self,
        file_path: str,
        sheet_mapping: Optional[Dict[str, str]] = None,
    ) -> Dict[str, PipelineResult]:
        """
        Import data from an Excel workbook with multiple sheets.

        Sheets are processed reference data first (categories, products,
        markets) and price history last, whatever their order in the file.

        Args:
            file_path: Path to the Excel file
            sheet_mapping: Dict mapping sheet names to data types; detected
                from the sheet names when omitted

        Returns:
            Dict mapping sheet names to PipelineResults
        """
        sheet_names = self.excel_importer.get_sheet_names(file_path)
        if not sheet_names:
            return {"error": PipelineResult(
                success=False,
                operation="import_excel",
                errors=[{"error": "Could not read Excel file or no sheets found"}],
            )}

        if not sheet_mapping:
            sheet_mapping = detect_sheet_types(sheet_names)

        ordered = sorted(
            sheet_mapping.items(),
            key=lambda item: (
                IMPORT_ORDER.index(item[1]) if item[1] in IMPORT_ORDER else len(IMPORT_ORDER)
            ),
        )

        results = {}
        for sheet_name, data_type in ordered:
            if data_type not in IMPORT_ORDER:
                logger.warning(f"Skipping sheet {sheet_name}: unknown data type {data_type}")
                continue
            results[sheet_name] = self._run(
                source_type="excel",
                source_name=f"{file_path}#{sheet_name}",
                data_type=data_type,
                load=lambda s=sheet_name, d=data_type: self.excel_importer.import_sheet(
                    file_path, d, s
                ),
            )

        return results

    # ==========================================================================
    # PERSISTENCE
    # ==========================================================================

    def _run(
        self,
        source_type: str,
        source_name: str,
        data_type: str,
        load: Callable[[], ImportResult],
    ) -> PipelineResult:
        """Load and validate rows, persist them and record the run."""
        result = PipelineResult(
            success=True,
            operation=f"import_{data_type}_{source_type}",
            started_at=datetime.now(),
        )

        if data_type not in IMPORT_ORDER:
            raise ValueError(f"Unknown data type: {data_type}")

        log = self._create_ingestion_log(source_type, source_name, data_type)
        result.log_id = log.log_id

        try:
            import_result = load()
            result.records_total = import_result.records_total
            result.records_failed = import_result.records_failed
            result.records_skipped = import_result.records_skipped
            result.errors.extend(import_result.errors)
            result.warnings.extend(import_result.warnings)

            if not import_result.success and import_result.records_total == 0:
                # File-level problem: missing file, no headers, unreadable sheet
                result.success = False
            else:
                self._persist_rows(data_type, import_result.imported_data, result)
        except Exception as e:
            self._get_session().rollback()
            result.success = False
            result.completed_at = datetime.now()
            result.errors.append({"message": f"Import aborted: {e}"})
            self._update_ingestion_log(log, result, status="failed")
            logger.exception(f"{result.operation} aborted for {source_name}")
            raise

        result.completed_at = datetime.now()
        if result.records_failed > 0:
            result.success = False

        self._update_ingestion_log(log, result)
        logger.info(
            f"{result.operation}: {result.records_imported} imported, "
            f"{result.records_failed} failed, {result.records_skipped} skipped "
            f"from {source_name}"
        )
        return result

    def _persist_rows(
        self,
        data_type: str,
        rows: List[Dict[str, Any]],
        result: PipelineResult,
    ):
        """Persist validated rows, committing each one on its own."""
        persist_fn = {
            "category": self._persist_category,
            "product": self._persist_product,
            "market": self._persist_market,
            "price_history": self._persist_price,
        }[data_type]

        session = self._get_session()
        for data in rows:
            try:
                imported = persist_fn(session, data, result)
                session.commit()
            except (RowRejected, NotFoundError, InvalidArgumentError) as e:
                session.rollback()
                result.records_failed += 1
                result.errors.append({"data": data, "message": str(e)})
                logger.warning(f"Rejected {data_type} row: {e}")
                continue
            except SQLAlchemyError as e:
                session.rollback()
                result.records_failed += 1
                result.errors.append({"data": data, "message": f"Database error: {str(e)}"})
                logger.exception(f"Failed to persist {data_type} row")
                continue

            if imported:
                result.records_imported += 1
            else:
                result.records_skipped += 1

    def _persist_category(self, session: Session, data: Dict, result: PipelineResult) -> bool:
        category = None
        if data.get("id"):
            category = session.get(Category, data["id"])
        if category is None:
            category = _find_by_name(session, Category, data["name"])
        if category is None:
            category = Category(**_given_id(data))
            session.add(category)

        category.name = data["name"]
        for attr in ("description", "color", "icon"):
            if data.get(attr) is not None:
                setattr(category, attr, data[attr])
        return True

    def _persist_product(self, session: Session, data: Dict, result: PipelineResult) -> bool:
        category_id = data.get("category_id")
        if category_id and session.get(Category, category_id) is None:
            raise NotFoundError("Category", category_id)
        if not category_id and data.get("category_name"):
            category = _find_by_name(session, Category, data["category_name"])
            if category is None:
                result.warnings.append({
                    "message": f"Unknown category '{data['category_name']}' "
                               f"for product '{data['name']}'",
                })
            else:
                category_id = category.id

        product = None
        if data.get("id"):
            product = session.get(Product, data["id"])
        if product is None:
            product = ProductStore(session).find_product_by_name(data["name"])
        if product is None:
            product = Product(**_given_id(data))
            session.add(product)

        product.name = data["name"]
        for attr in ("description", "image"):
            if data.get(attr) is not None:
                setattr(product, attr, data[attr])
        if category_id:
            product.category_id = category_id
        return True

    def _persist_market(self, session: Session, data: Dict, result: PipelineResult) -> bool:
        market = None
        if data.get("id"):
            market = session.get(Market, data["id"])
        if market is None:
            market = (
                session.query(Market)
                .filter(Market.name == data["name"])
                .filter(
                    Market.city.is_(None) if data.get("city") is None
                    else Market.city == data["city"]
                )
                .first()
            )
        if market is None:
            market = Market(**_given_id(data))
            session.add(market)

        market.name = data["name"]
        for attr in ("address", "city", "state", "zip_code"):
            if data.get(attr) is not None:
                setattr(market, attr, data[attr])
        if data.get("latitude") is not None:
            market.set_location(data["latitude"], data["longitude"])
        return True

    def _persist_price(self, session: Session, data: Dict, result: PipelineResult) -> bool:
        if data.get("id") and session.get(PriceHistory, data["id"]) is not None:
            # Already recorded by an earlier run
            return False

        product = self._resolve_product(session, data)
        market = self._resolve_market(session, data)

        session.add(PriceHistory(
            **_given_id(data),
            product_id=product.id,
            market_id=market.id,
            price=data["price"],
            purchase_date=data.get("purchase_date") or datetime.now(),
        ))
        return True

    def _resolve_product(self, session: Session, data: Dict) -> Product:
        if data.get("product_id"):
            product = session.get(Product, data["product_id"])
            if product is None:
                raise NotFoundError("Product", data["product_id"])
            return product

        product = ProductStore(session).find_product_by_name(data["product_name"])
        if product is None:
            raise RowRejected(f"Unknown product '{data['product_name']}'")
        return product

    def _resolve_market(self, session: Session, data: Dict) -> Market:
        if data.get("market_id"):
            market = session.get(Market, data["market_id"])
            if market is None:
                raise NotFoundError("Market", data["market_id"])
            return market

        market = MarketStore(session).find_market_by_name(
            data["market_name"], data.get("city")
        )
        if market is None:
            raise RowRejected(f"Unknown market '{data['market_name']}'")
        return market

    def close(self):
        """Close the session and engine opened by this pipeline."""
        if self._session is not None and self._owns_session:
            self._session.close()
            self._session = None
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None


def _find_by_name(session: Session, model, name: str):
    """Case-insensitive name lookup for models with a unique name."""
    matches = match_name(session.query(model).order_by(model.id), model.name, name)
    return matches[0] if matches else None


def _given_id(data: Dict) -> Dict[str, str]:
    """Primary key from the file, if any; otherwise the model default applies."""
    return {"id": data["id"]} if data.get("id") else {}
