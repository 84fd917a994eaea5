import asyncio
from collections.abc import Iterator
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from sqlalchemy.engine import Engine
from sqlmodel import Session, SQLModel, create_engine, select

from storefront.models import BlogPost, Brand, Product
from storefront.schemas import ProductCreate
from storefront.services.cache import QueryCache
from storefront.services.catalog import (
	CatalogService,
	DuplicateSlugError,
	build_cache_key,
	format_category_label,
	normalize_category,
	parse_price_range,
)

BASE_TIME = datetime(2026, 3, 1, tzinfo=timezone.utc)


def _make_product(slug: str, **overrides: object) -> Product:
	values: dict[str, object] = {
		"name": slug.replace("-", " ").title(),
		"slug": slug,
		"category": "running-shoes",
		"price": 80.0,
		"list_price": 100.0,
		"count_in_stock": 5,
		"tags": ["new arrival"],
		"created_at": BASE_TIME,
	}
	values.update(overrides)
	return Product(**values)


@pytest.fixture
def engine(tmp_path: Path) -> Iterator[Engine]:
	catalog_engine = create_engine(
		f"sqlite:///{tmp_path / 'catalog-test.db'}",
		connect_args={"check_same_thread": False},
	)
	SQLModel.metadata.create_all(catalog_engine)

	with Session(catalog_engine) as session:
		session.add_all([
			_make_product(
				"trail-runner",
				tags=["new arrival", "best seller"],
				num_sales=40,
				price=89.0,
				avg_rating=4.5,
			),
			_make_product(
				"road-racer",
				tags=["featured"],
				num_sales=90,
				price=120.0,
				avg_rating=4.8,
				created_at=BASE_TIME + timedelta(days=1),
			),
			_make_product(
				"tempo-trainer",
				num_sales=10,
				price=70.0,
				avg_rating=3.9,
				created_at=BASE_TIME + timedelta(days=2),
			),
			_make_product("rain-shell", category="Outerwear ", tags=["new arrival"], price=65.0),
			_make_product("prototype", category="secret-lab", is_published=False),
			Brand(name="Northwind", slug="northwind"),
			Brand(name="Contoso", slug="contoso", is_featured=True),
			Brand(name="Acme", slug="acme"),
			BlogPost(title="Trail tips", slug="trail-tips", is_published=True, created_at=BASE_TIME),
			BlogPost(
				title="Race day",
				slug="race-day",
				is_published=True,
				created_at=BASE_TIME + timedelta(days=3),
			),
			BlogPost(title="Draft", slug="draft", is_published=False),
		])
		session.commit()

	yield catalog_engine
	catalog_engine.dispose()


@pytest.fixture
def clock() -> list[float]:
	return [0.0]


@pytest.fixture
def catalog(engine: Engine, clock: list[float]) -> CatalogService:
	return CatalogService(QueryCache(now=lambda: clock[0]), engine, ttl_ms=10_000, page_size=2)


def test_build_cache_key_sorts_and_normalizes_parameters() -> None:
	key = build_cache_key("products", tag=" Featured ", page=2, category=None)

	assert key == "products:category=:page=2:tag=featured"


@pytest.mark.parametrize(
	("raw_category", "expected"),
	[
		("running-shoes", "Running Shoes"),
		("  OUTERWEAR ", "Outerwear"),
		("trail  running", "Trail Running"),
	],
)
def test_format_category_label_title_cases_words(raw_category: str, expected: str) -> None:
	assert format_category_label(raw_category) == expected


def test_list_categories_skips_unpublished_products(catalog: CatalogService) -> None:
	assert asyncio.run(catalog.list_categories()) == ["Outerwear", "Running Shoes"]


def test_list_tags_collects_distinct_published_tags(catalog: CatalogService) -> None:
	assert asyncio.run(catalog.list_tags()) == ["best seller", "featured", "new arrival"]


def test_list_brands_puts_featured_brands_first(catalog: CatalogService) -> None:
	brands = asyncio.run(catalog.list_brands())

	assert [brand.slug for brand in brands] == ["contoso", "acme", "northwind"]


def test_search_products_pages_newest_first(catalog: CatalogService) -> None:
	first_page = asyncio.run(catalog.search_products(category="Running-Shoes"))
	second_page = asyncio.run(catalog.search_products(category="running-shoes", page=2))

	assert [item.slug for item in first_page.items] == ["tempo-trainer", "road-racer"]
	assert [item.slug for item in second_page.items] == ["trail-runner"]
	assert first_page.total_pages == 2
	assert second_page.page == 2


def test_search_products_filters_by_name_and_tag(catalog: CatalogService) -> None:
	by_name = asyncio.run(catalog.search_products(query="RACER"))
	by_tag = asyncio.run(catalog.search_products(tag="new arrival", limit=10))
	everything = asyncio.run(catalog.search_products(query="all", limit=10))

	assert [item.slug for item in by_name.items] == ["road-racer"]
	assert {item.slug for item in by_tag.items} == {"trail-runner", "tempo-trainer", "rain-shell"}
	assert len(everything.items) == 4


def test_products_by_tag_limits_results(catalog: CatalogService) -> None:
	products = asyncio.run(catalog.products_by_tag("new arrival", limit=1))

	assert [product.slug for product in products] == ["tempo-trainer"]


def test_get_product_returns_none_for_unpublished_or_missing(catalog: CatalogService) -> None:
	assert asyncio.run(catalog.get_product("prototype")) is None
	assert asyncio.run(catalog.get_product("missing")) is None


def test_get_product_serves_cached_copy_until_ttl_expires(
	catalog: CatalogService,
	engine: Engine,
	clock: list[float],
) -> None:
	def rename_product(name: str) -> None:
		with Session(engine) as session:
			product = session.exec(select(Product).where(Product.slug == "trail-runner")).one()
			product.name = name
			session.add(product)
			session.commit()

	async def scenario() -> list[str]:
		names = [(await catalog.get_product("trail-runner")).name]
		rename_product("Trail Runner 2")
		clock[0] = 5.0
		names.append((await catalog.get_product("trail-runner")).name)
		clock[0] = 11.0
		names.append((await catalog.get_product("trail-runner")).name)
		while catalog.cache.is_refreshing("product:trail-runner"):
			await asyncio.sleep(0.01)
		names.append((await catalog.get_product("trail-runner")).name)
		return names

	assert asyncio.run(scenario()) == ["Trail Runner", "Trail Runner", "Trail Runner", "Trail Runner 2"]


def test_related_products_share_category_and_exclude_the_product(catalog: CatalogService) -> None:
	related = asyncio.run(catalog.related_products("trail-runner", limit=4))

	assert [item.slug for item in related.items] == ["road-racer", "tempo-trainer"]
	assert related.total_pages == 1


def test_related_products_for_unknown_slug_is_empty(catalog: CatalogService) -> None:
	related = asyncio.run(catalog.related_products("missing"))

	assert related.items == []
	assert related.total_pages == 0


def test_list_blogs_returns_published_posts_newest_first(catalog: CatalogService) -> None:
	blogs = asyncio.run(catalog.list_blogs(limit=10))

	assert [post.slug for post in blogs.items] == ["race-day", "trail-tips"]
	assert blogs.total_pages == 1
	assert asyncio.run(catalog.get_blog("draft")) is None
	assert asyncio.run(catalog.get_blog("Race-Day")).title == "Race day"


def test_create_product_clears_cached_listings(catalog: CatalogService) -> None:
	async def scenario() -> tuple[list[str], list[str]]:
		before = await catalog.list_categories()
		await catalog.create_product(
			ProductCreate(
				name="Trail Gaiters",
				category="Accessories",
				price=20,
				list_price=25,
			),
		)
		after = await catalog.list_categories()
		return before, after

	before, after = asyncio.run(scenario())

	assert before == ["Outerwear", "Running Shoes"]
	assert after == ["Accessories", "Outerwear", "Running Shoes"]


def test_create_product_rejects_duplicate_slug(catalog: CatalogService) -> None:
	payload = ProductCreate(name="Trail Runner", category="running-shoes", price=1, list_price=1)

	with pytest.raises(DuplicateSlugError, match="trail-runner"):
		asyncio.run(catalog.create_product(payload))


def test_failing_database_degrades_to_fallbacks(tmp_path: Path) -> None:
	empty_engine = create_engine(f"sqlite:///{tmp_path / 'empty.db'}")
	catalog = CatalogService(QueryCache(), empty_engine)

	assert asyncio.run(catalog.list_categories()) == []
	assert asyncio.run(catalog.get_product("anything")) is None
	page = asyncio.run(catalog.search_products(page=3))
	assert page.items == []
	assert page.page == 3
	assert catalog.cache.stats().failures == 3


@pytest.mark.parametrize(
	("raw_price", "expected"),
	[
		(None, None),
		("all", None),
		("10-50", (10.0, 50.0)),
		(" 9.5 - 20 ", (9.5, 20.0)),
	],
)
def test_parse_price_range_accepts_low_high_pairs(
	raw_price: str | None,
	expected: tuple[float, float] | None,
) -> None:
	assert parse_price_range(raw_price) == expected


@pytest.mark.parametrize("raw_price", ["cheap", "50-10", "10-"])
def test_parse_price_range_rejects_malformed_values(raw_price: str) -> None:
	with pytest.raises(ValueError, match="Price filter"):
		parse_price_range(raw_price)


def test_normalize_category_treats_spaces_and_hyphens_alike() -> None:
	assert normalize_category("Running Shoes") == "running-shoes"
	assert normalize_category(" running--shoes ") == "running-shoes"


def test_search_products_sorts_by_requested_order(catalog: CatalogService) -> None:
	def slugs(sort: str | None) -> list[str]:
		page = asyncio.run(catalog.search_products(sort=sort, limit=10))
		return [item.slug for item in page.items]

	assert slugs("best-selling")[:3] == ["road-racer", "trail-runner", "tempo-trainer"]
	assert slugs("price-low-to-high") == ["rain-shell", "tempo-trainer", "trail-runner", "road-racer"]
	assert slugs("price-high-to-low") == ["road-racer", "trail-runner", "tempo-trainer", "rain-shell"]
	assert slugs("avg-customer-review")[:3] == ["road-racer", "trail-runner", "tempo-trainer"]
	assert slugs("unknown")[:2] == ["tempo-trainer", "road-racer"]


def test_search_products_filters_by_price_and_rating(catalog: CatalogService) -> None:
	by_price = asyncio.run(catalog.search_products(price="80-100", limit=10))
	by_rating = asyncio.run(catalog.search_products(rating=4.5, sort="price-low-to-high", limit=10))

	assert [item.slug for item in by_price.items] == ["trail-runner"]
	assert [item.slug for item in by_rating.items] == ["trail-runner", "road-racer"]


def test_search_products_reports_totals_and_item_range(catalog: CatalogService) -> None:
	first_page = asyncio.run(catalog.search_products(category="running-shoes"))
	second_page = asyncio.run(catalog.search_products(category="running-shoes", page=2))
	past_end = asyncio.run(catalog.search_products(category="running-shoes", page=5))

	assert (first_page.total_products, first_page.from_, first_page.to) == (3, 1, 2)
	assert (second_page.total_products, second_page.from_, second_page.to) == (3, 3, 3)
	assert past_end.items == []
	assert (past_end.total_products, past_end.from_, past_end.to) == (3, 0, 0)
	assert second_page.model_dump(by_alias=True)["from"] == 3


def test_search_products_accepts_category_labels(catalog: CatalogService) -> None:
	labels = asyncio.run(catalog.list_categories())
	pages = [asyncio.run(catalog.search_products(category=label, limit=10)) for label in labels]

	assert [page.total_products for page in pages] == [1, 3]


def test_search_products_rejects_malformed_price(catalog: CatalogService) -> None:
	with pytest.raises(ValueError, match="Price filter"):
		asyncio.run(catalog.search_products(price="cheap"))


def test_tags_are_trimmed_and_lowercased(engine: Engine, catalog: CatalogService) -> None:
	with Session(engine) as session:
		session.add(_make_product("race-belt", category="accessories", tags=["  Featured ", "NEW ARRIVAL"]))
		session.commit()

	tags = asyncio.run(catalog.list_tags())
	featured = asyncio.run(catalog.search_products(tag=" FEATURED", limit=10))

	assert tags == ["best seller", "featured", "new arrival"]
	assert {item.slug for item in featured.items} == {"road-racer", "race-belt"}
	assert featured.total_products == 2
