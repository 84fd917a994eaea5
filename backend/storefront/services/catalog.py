from __future__ import annotations

import asyncio
from collections.abc import Callable
import logging
from math import ceil
import re
from typing import TypeVar

from sqlalchemy import func
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from storefront.models import BlogPost, Brand, Product
from storefront.schemas import (
	BlogPage,
	BlogRead,
	BrandRead,
	ProductCreate,
	ProductPage,
	ProductRead,
)
from storefront.services.cache import DEFAULT_TTL_MS, QueryCache

Result = TypeVar("Result")

logger = logging.getLogger(__name__)

PRICE_RANGE_PATTERN = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*-\s*(\d+(?:\.\d+)?)\s*$")
PRODUCT_SORTS = {
	"newest": (col(Product.created_at).desc(), col(Product.id).desc()),
	"best-selling": (col(Product.num_sales).desc(), col(Product.id).desc()),
	"price-low-to-high": (col(Product.price).asc(), col(Product.id).desc()),
	"price-high-to-low": (col(Product.price).desc(), col(Product.id).desc()),
	"avg-customer-review": (col(Product.avg_rating).desc(), col(Product.id).desc()),
}


class DuplicateSlugError(ValueError):
	"""Raised when a catalog write collides with an existing slug."""


def _strip_all(value: str | None) -> str:
	stripped = (value or "").strip()
	return "" if stripped.lower() == "all" else stripped


def normalize_label(value: str) -> str:
	return value.strip().lower()


def normalize_category(value: str) -> str:
	"""Map stored values and display labels onto one hyphenated form."""
	return "-".join(re.split(r"[\s-]+", value.strip().lower())).strip("-")


def parse_price_range(value: str | None) -> tuple[float, float] | None:
	"""Parse a ``low-high`` price filter such as ``"10-50"``."""
	candidate = _strip_all(value)
	if not candidate:
		return None

	match = PRICE_RANGE_PATTERN.fullmatch(candidate)
	if match is None:
		raise ValueError("Price filter must look like 10-50.")

	low, high = float(match.group(1)), float(match.group(2))
	if low > high:
		raise ValueError("Price filter lower bound exceeds the upper bound.")
	return low, high


def build_cache_key(prefix: str, **params: object) -> str:
	"""Build a stable cache key from a prefix and sorted query parameters."""
	parts = [prefix]
	for name in sorted(params):
		value = params[name]
		normalized = "" if value is None else str(value).strip().lower()
		parts.append(f"{name}={normalized}")
	return ":".join(parts)


def format_category_label(value: str) -> str:
	"""Title-case a stored category, treating hyphens as word breaks."""
	words = re.split(r"\s+|-", value.strip().lower())
	return " ".join(word[:1].upper() + word[1:] for word in words if word)


def _total_pages(count: int, limit: int) -> int:
	return ceil(count / limit) if limit > 0 else 0


def _product_page(products: list[Product], page: int, limit: int, count: int) -> ProductPage:
	offset = (page - 1) * limit
	return ProductPage(
		items=[ProductRead.model_validate(product) for product in products],
		page=page,
		total_pages=_total_pages(count, limit),
		total_products=count,
		from_=offset + 1 if products else 0,
		to=offset + len(products) if products else 0,
	)


class CatalogService:
	"""Read the storefront catalog through a shared QueryCache."""

	def __init__(
		self,
		cache: QueryCache,
		engine: Engine,
		ttl_ms: int = DEFAULT_TTL_MS,
		page_size: int = 9,
	) -> None:
		self.cache = cache
		self.engine = engine
		self.ttl_ms = ttl_ms
		self.page_size = page_size

	async def _cached(
		self,
		key: str,
		load: Callable[[Session], Result],
		fallback: Result | None = None,
	) -> Result | None:
		async def query() -> Result:
			return await asyncio.to_thread(self._run, load)

		return await self.cache.get(key, query, ttl_ms=self.ttl_ms, fallback=fallback)

	def _run(self, load: Callable[[Session], Result]) -> Result:
		with Session(self.engine) as session:
			return load(session)

	async def list_categories(self) -> list[str]:
		def load(session: Session) -> list[str]:
			rows = session.exec(
				select(Product.category).where(Product.is_published == True).distinct()  # noqa: E712
			).all()
			labels = {format_category_label(row) for row in rows if row and row.strip()}
			return sorted(labels)

		return await self._cached("categories", load, fallback=[]) or []

	async def list_tags(self) -> list[str]:
		def load(session: Session) -> list[str]:
			rows = session.exec(
				select(Product.tags).where(Product.is_published == True)  # noqa: E712
			).all()
			labels = {normalize_label(tag) for tags in rows for tag in (tags or []) if tag}
			return sorted(label for label in labels if label)

		return await self._cached("tags", load, fallback=[]) or []

	async def list_brands(self) -> list[BrandRead]:
		def load(session: Session) -> list[BrandRead]:
			brands = session.exec(
				select(Brand).order_by(col(Brand.is_featured).desc(), Brand.name)
			).all()
			return [BrandRead.model_validate(brand) for brand in brands]

		return await self._cached("brands", load, fallback=[]) or []

	async def search_products(
		self,
		query: str | None = None,
		category: str | None = None,
		tag: str | None = None,
		price: str | None = None,
		rating: float | None = None,
		sort: str | None = None,
		page: int = 1,
		limit: int | None = None,
	) -> ProductPage:
		page_size = limit or self.page_size
		page = max(page, 1)
		name_filter = _strip_all(query)
		category_filter = normalize_category(_strip_all(category))
		tag_filter = normalize_label(_strip_all(tag))
		price_range = parse_price_range(price)
		sort_key = sort if sort in PRODUCT_SORTS else "newest"

		def load(session: Session) -> ProductPage:
			conditions = [Product.is_published == True]  # noqa: E712
			if name_filter:
				conditions.append(col(Product.name).ilike(f"%{name_filter}%"))
			if category_filter:
				conditions.append(
					func.replace(func.lower(func.trim(Product.category)), " ", "-") == category_filter,
				)
			if price_range is not None:
				conditions.append(col(Product.price).between(*price_range))
			if rating is not None:
				conditions.append(col(Product.avg_rating) >= rating)

			statement = select(Product).where(*conditions).order_by(*PRODUCT_SORTS[sort_key])
			offset = (page - 1) * page_size
			if tag_filter:
				products = [
					product
					for product in session.exec(statement).all()
					if tag_filter in {normalize_label(value) for value in product.tags or []}
				]
				return _product_page(products[offset:offset + page_size], page, page_size, len(products))

			count = session.exec(select(func.count()).select_from(Product).where(*conditions)).one()
			products = session.exec(statement.offset(offset).limit(page_size)).all()
			return _product_page(products, page, page_size, count)

		key = build_cache_key(
			"products",
			q=name_filter,
			category=category_filter,
			tag=tag_filter,
			price="" if price_range is None else "{:g}-{:g}".format(*price_range),
			rating=rating,
			sort=sort_key,
			page=page,
			limit=page_size,
		)
		result = await self._cached(key, load, fallback=ProductPage(page=page))
		return result or ProductPage(page=page)

	async def products_by_tag(self, tag: str, limit: int = 10) -> list[ProductRead]:
		page = await self.search_products(tag=tag, limit=limit)
		return page.items

	async def get_product(self, slug: str) -> ProductRead | None:
		normalized_slug = slug.strip().lower()

		def load(session: Session) -> ProductRead | None:
			product = session.exec(
				select(Product).where(
					Product.slug == normalized_slug,
					Product.is_published == True,  # noqa: E712
				)
			).first()
			if product is None:
				return None
			return ProductRead.model_validate(product)

		return await self._cached(f"product:{normalized_slug}", load)

	async def related_products(self, slug: str, page: int = 1, limit: int = 4) -> ProductPage:
		normalized_slug = slug.strip().lower()
		page = max(page, 1)
		product = await self.get_product(normalized_slug)
		if product is None:
			return ProductPage(page=page)

		def load(session: Session) -> ProductPage:
			conditions = (
				Product.is_published == True,  # noqa: E712
				Product.category == product.category,
				Product.id != product.id,
			)
			count = session.exec(select(func.count()).select_from(Product).where(*conditions)).one()
			related = session.exec(
				select(Product)
				.where(*conditions)
				.order_by(col(Product.num_sales).desc(), Product.id)
				.offset((page - 1) * limit)
				.limit(limit)
			).all()
			return _product_page(list(related), page, limit, count)

		key = build_cache_key(f"product:{normalized_slug}:related", page=page, limit=limit)
		result = await self._cached(key, load, fallback=ProductPage(page=page))
		return result or ProductPage(page=page)

	async def list_blogs(self, page: int = 1, limit: int = 9) -> BlogPage:
		page = max(page, 1)

		def load(session: Session) -> BlogPage:
			published = BlogPost.is_published == True  # noqa: E712
			count = session.exec(select(func.count()).select_from(BlogPost).where(published)).one()
			posts = session.exec(
				select(BlogPost)
				.where(published)
				.order_by(col(BlogPost.created_at).desc(), col(BlogPost.id).desc())
				.offset((page - 1) * limit)
				.limit(limit)
			).all()
			return BlogPage(
				items=[BlogRead.model_validate(post) for post in posts],
				page=page,
				total_pages=_total_pages(count, limit),
			)

		key = build_cache_key("blogs", page=page, limit=limit)
		result = await self._cached(key, load, fallback=BlogPage(page=page))
		return result or BlogPage(page=page)

	async def get_blog(self, slug: str) -> BlogRead | None:
		normalized_slug = slug.strip().lower()

		def load(session: Session) -> BlogRead | None:
			post = session.exec(
				select(BlogPost).where(
					BlogPost.slug == normalized_slug,
					BlogPost.is_published == True,  # noqa: E712
				)
			).first()
			if post is None:
				return None
			return BlogRead.model_validate(post)

		return await self._cached(f"blog:{normalized_slug}", load)

	async def create_product(self, payload: ProductCreate) -> ProductRead:
		"""Persist a product and drop cached listings so reads pick it up."""
		created = await asyncio.to_thread(self._insert_product, payload)
		self.cache.clear()
		logger.info("Created product %s; catalog cache cleared.", created.slug)
		return created

	def _insert_product(self, payload: ProductCreate) -> ProductRead:
		with Session(self.engine) as session:
			product = Product(**payload.model_dump())
			session.add(product)
			try:
				session.commit()
			except IntegrityError as exc:
				session.rollback()
				raise DuplicateSlugError(f"A product with slug {payload.slug!r} already exists.") from exc
			session.refresh(product)
			return ProductRead.model_validate(product)
