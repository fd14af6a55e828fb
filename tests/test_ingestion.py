"""
Tests for CSV/Excel importers and the ingestion pipeline.
"""

import json
import pytest
import sys
from pathlib import Path
from datetime import datetime

import openpyxl

sys.path.insert(0, str(Path(__file__).parent.parent))

from database.models import Category, IngestionLog, Market, PriceHistory, Product
from ingestion.csv_importer import CSVImporter, build_column_mapping
from ingestion.excel_importer import ExcelImporter, detect_sheet_types
from ingestion.pipeline import IngestionPipeline


def write_csv(path, text):
    path.write_text(text.strip() + "\n", encoding="utf-8")
    return str(path)


def write_workbook(path, sheets):
    """sheets: {sheet name: [header row, *rows]}"""
    workbook = openpyxl.Workbook()
    workbook.remove(workbook.active)
    for name, rows in sheets.items():
        sheet = workbook.create_sheet(title=name)
        for row in rows:
            sheet.append(row)
    workbook.save(path)
    return str(path)


MARKETS_CSV = """
nome,endereco,cidade,estado,cep,latitude,longitude
Supermercado Pão de Açúcar,"Av. Paulista, 1234",São Paulo,SP,01310-100,-23.5613,-46.6565
Extra Hipermercado,"Rua Augusta, 567",São Paulo,SP,01305-000,-23.5505,-46.6333
Mercadinho do Bairro,,Recife,PE,,,
Meio Perdido,,Recife,PE,,-8.05,
"""


class TestColumnMapping:
    """Header aliases in English and Portuguese."""

    def test_portuguese_headers(self):
        mapping = build_column_mapping(
            ["Produto", "Mercado", "Preço", "Data Compra"], "price_history"
        )
        assert mapping == {
            "product_name": "Produto",
            "market_name": "Mercado",
            "price": "Preço",
            "purchase_date": "Data Compra",
        }

    def test_english_headers(self):
        mapping = build_column_mapping(
            ["product_id", "market_id", "price", "date"], "price_history"
        )
        assert mapping["product_id"] == "product_id"
        assert mapping["purchase_date"] == "date"

    def test_custom_mapping_wins(self):
        mapping = build_column_mapping(["a", "b"], "market", {"name": "a"})
        assert mapping == {"name": "a"}

    def test_column_used_once(self):
        mapping = build_column_mapping(["id", "name"], "product")
        assert mapping == {"id": "id", "name": "name"}


class TestCSVImporter:
    """Tests for CSVImporter."""

    @pytest.fixture
    def importer(self):
        return CSVImporter()

    def test_import_markets(self, importer, tmp_path):
        path = write_csv(tmp_path / "mercados.csv", MARKETS_CSV)
        result = importer.import_markets(path)

        assert result.records_total == 4
        assert result.records_success == 3
        assert result.records_failed == 1
        assert result.success is False
        assert result.errors[0]["row"] == 5

        first = result.imported_data[0]
        assert first["name"] == "Supermercado Pão de Açúcar"
        assert first["zip_code"] == "01310-100"
        assert first["latitude"] == -23.5613
        assert result.imported_data[2]["latitude"] is None

    def test_import_price_history(self, importer, tmp_path):
        path = write_csv(tmp_path / "precos.csv", """
produto,mercado,cidade,preco,data_compra
Banana Prata,Extra Hipermercado,São Paulo,"4,99",01/10/2026
Banana Prata,Extra Hipermercado,São Paulo,0,01/10/2026
""")
        result = importer.import_price_history(path)

        assert result.records_success == 1
        assert result.records_failed == 1
        row = result.imported_data[0]
        assert row["price"] == 4.99
        assert row["purchase_date"] == datetime(2026, 10, 1)
        assert row["product_name"] == "Banana Prata"

    def test_blank_rows_skipped(self, importer, tmp_path):
        path = write_csv(tmp_path / "categorias.csv", "nome,cor\nBebidas,#06b6d4\n,\nLimpeza,#3b82f6")
        result = importer.import_categories(path)

        assert result.records_total == 2
        assert result.records_skipped == 1
        assert result.success is True

    def test_semicolon_delimiter(self, importer, tmp_path):
        path = write_csv(tmp_path / "categorias.csv", "nome;cor;icone\nBebidas;#06b6d4;x\nLimpeza;#3b82f6;y")
        result = importer.import_categories(path)

        assert result.records_success == 2
        assert result.imported_data[1]["color"] == "#3b82f6"

    def test_missing_file(self, importer, tmp_path):
        result = importer.import_markets(str(tmp_path / "nope.csv"))

        assert result.success is False
        assert "File not found" in result.errors[0]["message"]

    def test_unknown_data_type(self, importer, tmp_path):
        with pytest.raises(ValueError):
            importer.import_file(str(tmp_path / "x.csv"), "coupon")

    def test_on_row_imported_callback(self, importer, tmp_path):
        path = write_csv(tmp_path / "mercados.csv", MARKETS_CSV)
        seen = []
        importer.import_markets(path, on_row_imported=seen.append)

        assert len(seen) == 3

    def test_preview(self, importer, tmp_path):
        path = write_csv(tmp_path / "mercados.csv", MARKETS_CSV)
        preview = importer.preview(path, "market", max_rows=2)

        assert preview["total_rows"] == 4
        assert len(preview["sample_rows"]) == 2
        assert preview["column_mapping"]["zip_code"] == "cep"
        assert preview["unmapped_fields"] == ["id"]

    def test_result_to_dict(self, importer, tmp_path):
        path = write_csv(tmp_path / "mercados.csv", MARKETS_CSV)
        data = importer.import_markets(path).to_dict()

        assert data["records_success"] == 3
        assert data["error_count"] == 1
        assert data["duration_seconds"] is not None


class TestExcelImporter:
    """Tests for ExcelImporter."""

    @pytest.fixture
    def importer(self):
        return ExcelImporter()

    def test_import_sheet_with_date_cells(self, importer, tmp_path):
        path = write_workbook(tmp_path / "precos.xlsx", {
            "Preços": [
                ["product_id", "market_id", "price", "purchase_date"],
                ["p-1", "m-1", 4.99, datetime(2026, 10, 1, 9, 0)],
                [None, None, None, None],
                ["p-1", "m-2", -1, datetime(2026, 10, 2)],
            ],
        })
        result = importer.import_price_history(path, sheet_name="Preços")

        assert result.records_total == 2
        assert result.records_skipped == 1
        assert result.records_success == 1
        assert result.records_failed == 1
        assert result.imported_data[0]["purchase_date"] == datetime(2026, 10, 1, 9, 0)

    def test_missing_sheet(self, importer, tmp_path):
        path = write_workbook(tmp_path / "dados.xlsx", {"Mercados": [["nome"], ["Loja"]]})
        result = importer.import_markets(path, sheet_name="Outra")

        assert result.success is False
        assert "not found" in result.errors[0]["message"]

    def test_sheet_names_and_detection(self, importer, tmp_path):
        path = write_workbook(tmp_path / "dados.xlsx", {
            "Categorias": [["nome"]],
            "Produtos": [["nome"]],
            "Mercados": [["nome"]],
            "Histórico de Preços": [["produto"]],
            "Notas": [["texto"]],
        })
        names = importer.get_sheet_names(path)

        assert names == ["Categorias", "Produtos", "Mercados", "Histórico de Preços", "Notas"]
        assert detect_sheet_types(names) == {
            "Categorias": "category",
            "Produtos": "product",
            "Mercados": "market",
            "Histórico de Preços": "price_history",
        }

    def test_preview(self, importer, tmp_path):
        path = write_workbook(tmp_path / "dados.xlsx", {
            "Mercados": [["nome", "cidade"], ["Loja A", "Recife"], ["Loja B", "Recife"]],
        })
        preview = importer.preview(path, "market")

        assert preview["total_rows"] == 2
        assert preview["sample_rows"][0] == {"name": "Loja A", "city": "Recife"}


class TestIngestionPipeline:
    """Tests for the full pipeline against an in-memory database."""

    @pytest.fixture
    def pipeline(self, session):
        pipeline = IngestionPipeline(session=session)
        yield pipeline
        pipeline.close()

    def test_import_markets_records_log(self, pipeline, session, tmp_path):
        path = write_csv(tmp_path / "mercados.csv", MARKETS_CSV)
        result = pipeline.import_markets_from_csv(path)

        assert result.records_imported == 3
        assert result.records_failed == 1
        assert result.status == "partial"
        assert session.query(Market).count() == 3

        log = session.get(IngestionLog, result.log_id)
        assert log.status == "partial"
        assert log.data_type == "market"
        assert log.records_success == 3
        assert len(json.loads(log.error_messages)) == 1

    def test_reimport_updates_instead_of_duplicating(self, pipeline, session, tmp_path):
        path = write_csv(tmp_path / "mercados.csv", MARKETS_CSV)
        pipeline.import_markets_from_csv(path)
        pipeline.import_markets_from_csv(path)

        assert session.query(Market).count() == 3

    def test_full_load_by_name(self, pipeline, session, tmp_path):
        categories = write_csv(tmp_path / "categorias.csv", """
nome,descricao,cor
Frutas e Verduras,"Frutas frescas, verduras e legumes",#22c55e
""")
        products = write_csv(tmp_path / "produtos.csv", """
nome,categoria
Banana Prata,Frutas e Verduras
Maçã Gala,Categoria Inexistente
""")
        markets = write_csv(tmp_path / "mercados.csv", MARKETS_CSV)
        prices = write_csv(tmp_path / "precos.csv", """
produto,mercado,cidade,preco,data_compra
Banana Prata,Extra Hipermercado,São Paulo,"4,99",2026-10-01
Banana Prata,Supermercado Pão de Açúcar,,5.49,2026-10-02
Abacaxi,Extra Hipermercado,São Paulo,7.00,2026-10-02
Banana Prata,Mercado Fantasma,,3.00,2026-10-02
""")

        assert pipeline.import_categories_from_csv(categories).status == "completed"

        product_result = pipeline.import_products_from_csv(products)
        assert product_result.records_imported == 2
        assert len(product_result.warnings) == 1

        pipeline.import_markets_from_csv(markets)
        result = pipeline.import_price_history_from_csv(prices)

        assert result.records_imported == 2
        assert result.records_failed == 2
        assert result.status == "partial"

        banana = session.query(Product).filter_by(name="Banana Prata").one()
        assert banana.category.name == "Frutas e Verduras"
        assert session.query(Product).filter_by(name="Maçã Gala").one().category_id is None

        prices_saved = session.query(PriceHistory).order_by(PriceHistory.purchase_date).all()
        assert [p.price for p in prices_saved] == [4.99, 5.49]
        assert prices_saved[0].market.name == "Extra Hipermercado"
        assert prices_saved[0].purchase_date == datetime(2026, 10, 1)

    def test_price_rows_with_unknown_ids_fail(self, pipeline, session, tmp_path):
        path = write_csv(tmp_path / "precos.csv", """
product_id,market_id,price
missing-product,missing-market,4.99
""")
        result = pipeline.import_price_history_from_csv(path)

        assert result.records_failed == 1
        assert result.records_imported == 0
        assert result.status == "failed"
        assert session.query(PriceHistory).count() == 0

    def test_duplicate_price_id_skipped(self, pipeline, session, tmp_path):
        session.add(Product(id="p-1", name="Tomate"))
        session.add(Market(id="m-1", name="Carrefour Barra", city="Rio de Janeiro"))
        session.commit()

        path = write_csv(tmp_path / "precos.csv", """
id,product_id,market_id,price,purchase_date
obs-1,p-1,m-1,8.90,2026-10-01
""")
        first = pipeline.import_price_history_from_csv(path)
        second = pipeline.import_price_history_from_csv(path)

        assert first.records_imported == 1
        assert second.records_imported == 0
        assert second.records_skipped == 1
        assert session.query(PriceHistory).count() == 1

    def test_missing_file_fails_run(self, pipeline, session, tmp_path):
        result = pipeline.import_markets_from_csv(str(tmp_path / "nope.csv"))

        assert result.success is False
        assert result.status == "failed"
        assert session.get(IngestionLog, result.log_id).status == "failed"

    def test_import_from_excel_orders_sheets(self, pipeline, session, tmp_path):
        """Price sheet comes first in the file but is loaded last."""
        path = write_workbook(tmp_path / "carga.xlsx", {
            "Preços": [
                ["produto", "mercado", "preco", "data"],
                ["Arroz Branco", "BIG Bompreço", 24.9, datetime(2026, 10, 3)],
            ],
            "Produtos": [["nome", "categoria"], ["Arroz Branco", "Mercearia"]],
            "Categorias": [["nome", "cor"], ["Mercearia", "#f97316"]],
            "Mercados": [
                ["nome", "cidade", "estado", "latitude", "longitude"],
                ["BIG Bompreço", "Recife", "PE", -8.0476, -34.8770],
            ],
        })
        results = pipeline.import_from_excel(path)

        assert list(results) == ["Categorias", "Produtos", "Mercados", "Preços"]
        assert all(r.status == "completed" for r in results.values())

        observation = session.query(PriceHistory).one()
        assert observation.price == 24.9
        assert observation.product.category.name == "Mercearia"
        assert observation.market.location == (-8.0476, -34.8770)

    def test_import_from_unreadable_excel(self, pipeline, tmp_path):
        results = pipeline.import_from_excel(str(tmp_path / "nope.xlsx"))
        assert results["error"].success is False

    def test_accented_names_resolve_and_update(self, pipeline, session, tmp_path):
        """Names starting with an accented capital match regardless of case."""
        categories = write_csv(tmp_path / "categorias.csv", "nome,cor\nÓleos e Azeites,#eab308")
        products = write_csv(tmp_path / "produtos.csv", "nome,categoria\nÁgua Mineral,óleos e azeites")
        session.add(Market(name="Extra Hipermercado", city="São Paulo"))
        session.commit()
        prices = write_csv(tmp_path / "precos.csv", """
produto,mercado,cidade,preco,data_compra
água mineral,Extra Hipermercado,SÃO PAULO,2.49,2026-10-01
""")

        pipeline.import_categories_from_csv(categories)
        pipeline.import_categories_from_csv(categories)
        product_result = pipeline.import_products_from_csv(products)
        pipeline.import_products_from_csv(products)
        price_result = pipeline.import_price_history_from_csv(prices)

        assert session.query(Category).count() == 1
        assert session.query(Product).count() == 1
        assert product_result.warnings == []
        assert session.query(Product).one().category.name == "Óleos e Azeites"
        assert price_result.status == "completed"
        assert session.query(PriceHistory).one().product.name == "Água Mineral"

    def test_unknown_data_type_leaves_no_log(self, pipeline, session, tmp_path):
        path = write_csv(tmp_path / "dados.csv", MARKETS_CSV)

        with pytest.raises(ValueError):
            pipeline.import_from_csv(path, "coupon")
        assert session.query(IngestionLog).count() == 0

    def test_aborted_run_marks_log_failed(self, pipeline, session, tmp_path, monkeypatch):
        path = write_csv(tmp_path / "mercados.csv", MARKETS_CSV)

        def broken_import(*args, **kwargs):
            raise RuntimeError("disk unplugged")

        monkeypatch.setattr(pipeline.csv_importer, "import_file", broken_import)

        with pytest.raises(RuntimeError):
            pipeline.import_markets_from_csv(path)

        log = session.query(IngestionLog).one()
        assert log.status == "failed"
        assert log.completed_at is not None
        assert "disk unplugged" in log.error_messages
        assert session.query(Market).count() == 0


class TestSampleData:
    """The sample data generator feeds the pipeline and the engines."""

    @pytest.fixture
    def sample(self):
        sys.path.insert(0, str(Path(__file__).parent.parent / "data" / "sample"))
        import generate_sample_data
        return generate_sample_data

    def test_seed_database(self, sample, session):
        counts = sample.seed_database(session, now=datetime(2026, 10, 17), seed=7)

        assert counts == {
            "categories": 8,
            "products": 22,
            "markets": 6,
            "price_history": 264,
        }
        assert session.query(PriceHistory).filter(PriceHistory.price <= 0).count() == 0

    def test_written_files_load_through_pipeline(self, sample, session, tmp_path):
        paths = sample.write_sample_files(tmp_path, now=datetime(2026, 10, 17), seed=7)
        pipeline = IngestionPipeline(session=session)

        for data_type in ("category", "product", "market", "price_history"):
            result = pipeline.import_from_csv(str(paths[data_type]), data_type)
            assert result.status == "completed", result.errors[:3]

        assert session.query(Market).count() == 6
        assert session.query(Category).count() == 8
        assert session.query(PriceHistory).count() == 264
        assert (tmp_path / "sample_data.json").exists()


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
