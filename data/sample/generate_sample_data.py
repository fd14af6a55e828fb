"""
Sample data generator for Meu Carrim.
Generates grocery categories, products, markets with coordinates and two
months of recorded purchase prices.
"""

import argparse
import csv
import json
import random
import sys
from datetime import datetime, timedelta
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from database.models import (
    Category,
    Product,
    Market,
    PriceHistory,
    get_session,
    init_database,
)


# Output directory
OUTPUT_DIR = Path(__file__).parent


# =============================================================================
# Sample Data Definitions
# =============================================================================

CATEGORIES = [
    {"name": "Frutas e Verduras", "description": "Frutas frescas, verduras e legumes", "color": "#22c55e", "icon": "🍎"},
    {"name": "Carnes e Peixes", "description": "Carnes vermelhas, aves, peixes e frutos do mar", "color": "#ef4444", "icon": "🥩"},
    {"name": "Laticínios", "description": "Leite, queijos, iogurtes e derivados", "color": "#f59e0b", "icon": "🧀"},
    {"name": "Padaria", "description": "Pães, bolos, biscoitos e produtos de panificação", "color": "#8b5cf6", "icon": "🍞"},
    {"name": "Bebidas", "description": "Águas, refrigerantes, sucos e bebidas em geral", "color": "#06b6d4", "icon": "🥤"},
    {"name": "Limpeza", "description": "Produtos de limpeza e higiene doméstica", "color": "#3b82f6", "icon": "🧽"},
    {"name": "Higiene Pessoal", "description": "Produtos de cuidado pessoal e beleza", "color": "#ec4899", "icon": "🧴"},
    {"name": "Mercearia", "description": "Grãos, massas, temperos e produtos secos", "color": "#f97316", "icon": "🏪"},
]

MARKETS = [
    {
        "name": "Supermercado Pão de Açúcar",
        "address": "Av. Paulista, 1234",
        "city": "São Paulo",
        "state": "SP",
        "zip_code": "01310-100",
        "latitude": -23.5613,
        "longitude": -46.6565,
    },
    {
        "name": "Extra Hipermercado",
        "address": "Rua Augusta, 567",
        "city": "São Paulo",
        "state": "SP",
        "zip_code": "01305-000",
        "latitude": -23.5505,
        "longitude": -46.6333,
    },
    {
        "name": "Carrefour Barra",
        "address": "Av. das Américas, 4666",
        "city": "Rio de Janeiro",
        "state": "RJ",
        "zip_code": "22640-102",
        "latitude": -23.0037,
        "longitude": -43.3656,
    },
    {
        "name": "Walmart Supercenter",
        "address": "Rua do Comércio, 890",
        "city": "Brasília",
        "state": "DF",
        "zip_code": "70040-010",
        "latitude": -15.7942,
        "longitude": -47.8822,
    },
    {
        "name": "Mercado Zona Sul",
        "address": "Rua Voluntários da Pátria, 445",
        "city": "Rio de Janeiro",
        "state": "RJ",
        "zip_code": "22270-000",
        "latitude": -22.9595,
        "longitude": -43.1882,
    },
    {
        "name": "BIG Bompreço",
        "address": "Av. Caxangá, 2200",
        "city": "Recife",
        "state": "PE",
        "zip_code": "52070-010",
        "latitude": -8.0476,
        "longitude": -34.8770,
    },
]

# (name, description, category)
PRODUCTS = [
    ("Banana Prata", "Banana prata doce e madura, rica em potássio", "Frutas e Verduras"),
    ("Maçã Gala", "Maçã gala vermelha, crocante e suculenta", "Frutas e Verduras"),
    ("Tomate", "Tomate maduro para saladas e cozinha", "Frutas e Verduras"),
    ("Alface Americana", "Alface americana fresca e crocante", "Frutas e Verduras"),
    ("Peito de Frango", "Peito de frango sem osso, ideal para grelhados", "Carnes e Peixes"),
    ("Carne Moída", "Carne moída fresca de primeira qualidade", "Carnes e Peixes"),
    ("Salmão", "Filé de salmão fresco, rico em ômega-3", "Carnes e Peixes"),
    ("Leite Integral", "Leite integral longa vida 1 litro", "Laticínios"),
    ("Queijo Mussarela", "Queijo mussarela fatiado 200g", "Laticínios"),
    ("Iogurte Natural", "Iogurte natural sem açúcar 170g", "Laticínios"),
    ("Pão Francês", "Pão francês tradicional fresquinho", "Padaria"),
    ("Pão Integral", "Pão integral de forma fatiado", "Padaria"),
    ("Água Mineral", "Água mineral natural sem gás 1,5L", "Bebidas"),
    ("Refrigerante Cola", "Refrigerante cola 2 litros", "Bebidas"),
    ("Suco de Laranja", "Suco de laranja natural 1 litro", "Bebidas"),
    ("Detergente", "Detergente líquido neutro 500ml", "Limpeza"),
    ("Papel Higiênico", "Papel higiênico folha dupla 4 rolos", "Limpeza"),
    ("Shampoo", "Shampoo para cabelos normais 400ml", "Higiene Pessoal"),
    ("Pasta de Dente", "Creme dental com flúor 90g", "Higiene Pessoal"),
    ("Arroz Branco", "Arroz branco tipo 1 pacote 5kg", "Mercearia"),
    ("Feijão Preto", "Feijão preto tipo 1 pacote 1kg", "Mercearia"),
    ("Macarrão Espaguete", "Macarrão espaguete nº 8 pacote 500g", "Mercearia"),
]


# =============================================================================
# Generators
# =============================================================================


def generate_products():
    """Product rows referencing their category by name."""
    return [
        {"name": name, "description": description, "category": category}
        for name, description, category in PRODUCTS
    ]


def generate_price_history(now=None, rng=None):
    """
    Two purchases per product and market: one 31-60 days ago at a base price
    between R$ 1,00 and R$ 50,00, and a second one within the last 30 days
    varying up to R$ 2,50 either way.
    """
    now = now or datetime.now()
    rng = rng or random.Random()
    history = []

    for name, _, _ in PRODUCTS:
        for market in MARKETS:
            base_price = round(rng.uniform(1, 50), 2)
            history.append({
                "product": name,
                "market": market["name"],
                "city": market["city"],
                "price": base_price,
                "purchase_date": (now - timedelta(days=rng.randint(31, 60))).replace(microsecond=0),
            })

            variation_price = round(base_price + (rng.random() - 0.5) * 5, 2)
            history.append({
                "product": name,
                "market": market["name"],
                "city": market["city"],
                "price": max(0.5, variation_price),
                "purchase_date": (now - timedelta(days=rng.randint(0, 29))).replace(microsecond=0),
            })

    return history


def save_csv(data, filename, fieldnames=None, output_dir=OUTPUT_DIR):
    """Save data to CSV file."""
    if not data:
        return None

    if fieldnames is None:
        fieldnames = list(data[0].keys())

    filepath = Path(output_dir) / filename
    with open(filepath, "w", newline="", encoding="utf-8") as f:
        writer = csv.DictWriter(f, fieldnames=fieldnames)
        writer.writeheader()
        writer.writerows(data)

    print(f"Saved {len(data)} records to {filename}")
    return filepath


def save_json(data, filename, output_dir=OUTPUT_DIR):
    """Save data to JSON file."""
    filepath = Path(output_dir) / filename
    with open(filepath, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, default=str, ensure_ascii=False)

    print(f"Saved data to {filename}")
    return filepath


def write_sample_files(output_dir=OUTPUT_DIR, now=None, seed=None):
    """
    Write categories.csv, products.csv, markets.csv, price_history.csv and a
    combined sample_data.json.

    Returns:
        Dict mapping data type to the written CSV path
    """
    rng = random.Random(seed)
    products = generate_products()
    history = generate_price_history(now=now, rng=rng)

    paths = {
        "category": save_csv(CATEGORIES, "categories.csv", output_dir=output_dir),
        "product": save_csv(products, "products.csv", output_dir=output_dir),
        "market": save_csv(MARKETS, "markets.csv", output_dir=output_dir),
        "price_history": save_csv(history, "price_history.csv", output_dir=output_dir),
    }

    save_json({
        "categories": CATEGORIES,
        "products": products,
        "markets": MARKETS,
        "price_history": history,
        "metadata": {
            "generated_at": datetime.now().isoformat(),
            "category_count": len(CATEGORIES),
            "product_count": len(products),
            "market_count": len(MARKETS),
            "price_count": len(history),
        },
    }, "sample_data.json", output_dir=output_dir)

    return paths


def seed_database(session, now=None, seed=None):
    """
    Load the sample data straight into a database session.

    Returns:
        Dict with the number of rows created per model
    """
    rng = random.Random(seed)

    categories = {}
    for data in CATEGORIES:
        category = Category(**data)
        session.add(category)
        categories[data["name"]] = category

    products = {}
    for name, description, category in PRODUCTS:
        product = Product(
            name=name,
            description=description,
            category=categories[category],
        )
        session.add(product)
        products[name] = product

    markets = {}
    for data in MARKETS:
        market = Market(**data)
        session.add(market)
        markets[data["name"]] = market

    history = generate_price_history(now=now, rng=rng)
    for row in history:
        session.add(PriceHistory(
            product=products[row["product"]],
            market=markets[row["market"]],
            price=row["price"],
            purchase_date=row["purchase_date"],
        ))

    session.commit()

    return {
        "categories": len(categories),
        "products": len(products),
        "markets": len(markets),
        "price_history": len(history),
    }


def main(argv=None):
    """Generate sample data files and optionally seed the database."""
    parser = argparse.ArgumentParser(description="Generate Meu Carrim sample data")
    parser.add_argument("--output-dir", default=str(OUTPUT_DIR))
    parser.add_argument("--seed", type=int, default=None, help="Random seed")
    parser.add_argument(
        "--load-db",
        action="store_true",
        help="Also load the data into DATABASE_URL",
    )
    args = parser.parse_args(argv)

    print("Generating sample data for Meu Carrim...")
    print(f"- {len(CATEGORIES)} categories")
    print(f"- {len(PRODUCTS)} products")
    print(f"- {len(MARKETS)} markets")
    print()

    write_sample_files(args.output_dir, seed=args.seed)

    if args.load_db:
        engine = init_database()
        session = get_session(engine)
        try:
            counts = seed_database(session, seed=args.seed)
        finally:
            session.close()
        print()
        print(f"Loaded into database: {counts}")

    print()
    print("Sample data generation complete!")


if __name__ == "__main__":
    main()
