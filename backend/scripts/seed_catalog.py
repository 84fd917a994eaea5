from __future__ import annotations

import argparse
import json
from pathlib import Path

from sqlalchemy import delete
from sqlmodel import Session, SQLModel

from storefront.database import build_engine
from storefront.models import BlogPost, Brand, Product
from storefront.schemas import ProductCreate, slugify
from storefront.settings import get_settings

SAMPLE_BRANDS = (
	{"name": "Northwind", "is_featured": True, "description": "Everyday outdoor basics."},
	{"name": "Contoso Athletics", "is_featured": False, "description": "Running and training gear."},
)
SAMPLE_PRODUCTS = (
	{
		"name": "Trail Runner 2",
		"category": "running-shoes",
		"brand": "Contoso Athletics",
		"tags": ["new arrival", "best seller"],
		"price": 89.0,
		"list_price": 110.0,
		"count_in_stock": 24,
	},
	{
		"name": "Road Racer",
		"category": "running-shoes",
		"brand": "Contoso Athletics",
		"tags": ["featured"],
		"price": 120.0,
		"list_price": 120.0,
		"count_in_stock": 8,
	},
	{
		"name": "Packable Rain Shell",
		"category": "outerwear",
		"brand": "Northwind",
		"tags": ["new arrival"],
		"price": 65.0,
		"list_price": 80.0,
		"count_in_stock": 40,
	},
)
SAMPLE_BLOGS = (
	{
		"title": "Choosing your first trail shoe",
		"category": "guides",
		"tags": ["running"],
		"content": "Grip, drop and fit matter more than weight.",
		"is_published": True,
	},
)


def load_fixture(path: Path | None) -> dict[str, list[dict[str, object]]]:
	if path is None:
		return {
			"brands": [dict(item) for item in SAMPLE_BRANDS],
			"products": [dict(item) for item in SAMPLE_PRODUCTS],
			"blogs": [dict(item) for item in SAMPLE_BLOGS],
		}

	payload = json.loads(path.read_text(encoding="utf-8"))
	return {
		"brands": list(payload.get("brands", [])),
		"products": list(payload.get("products", [])),
		"blogs": list(payload.get("blogs", [])),
	}


def seed_catalog(database_url: str, fixture: dict[str, list[dict[str, object]]], reset: bool) -> dict[str, int]:
	engine = build_engine(database_url)
	SQLModel.metadata.create_all(engine)

	with Session(engine) as session:
		if reset:
			for model in (Product, Brand, BlogPost):
				session.execute(delete(model))

		for item in fixture["brands"]:
			session.add(Brand(**{"slug": slugify(str(item["name"])), **item}))

		for item in fixture["products"]:
			session.add(Product(**ProductCreate.model_validate(item).model_dump()))

		for item in fixture["blogs"]:
			session.add(BlogPost(**{"slug": slugify(str(item["title"])), **item}))

		session.commit()

	return {name: len(items) for name, items in fixture.items()}


def main() -> None:
	parser = argparse.ArgumentParser(description="Seed the storefront catalog with sample data.")
	parser.add_argument(
		"--db",
		default=get_settings().database_url,
		help="SQLAlchemy database URL to seed.",
	)
	parser.add_argument(
		"--fixture",
		type=Path,
		default=None,
		help="JSON file with brands, products, and blogs lists.",
	)
	parser.add_argument(
		"--keep",
		action="store_true",
		help="Append to existing rows instead of clearing the catalog first.",
	)
	args = parser.parse_args()

	counts = seed_catalog(args.db, load_fixture(args.fixture), reset=not args.keep)
	print(json.dumps({"seeded": counts}, ensure_ascii=False))


if __name__ == "__main__":
	main()
