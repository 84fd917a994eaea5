from __future__ import annotations

from datetime import datetime, timezone
import re
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator, model_validator

SLUG_PATTERN = re.compile(r"^[a-z0-9]+(?:-[a-z0-9]+)*$")


def _normalize_optional_text(value: str | None) -> str | None:
	if value is None:
		return None

	stripped = value.strip()
	return stripped or None


def _serialize_utc(value: datetime) -> str:
	if value.tzinfo is None:
		value = value.replace(tzinfo=timezone.utc)
	return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def slugify(value: str) -> str:
	"""Turn a display name into a lowercase, hyphen-separated slug."""
	slug = re.sub(r"[^a-z0-9]+", "-", value.strip().lower()).strip("-")
	if not slug:
		raise ValueError("Cannot derive a slug from an empty name.")
	return slug


def _normalize_labels(values: list[str] | None) -> list[str]:
	labels: list[str] = []
	for value in values or []:
		label = value.strip().lower()
		if label and label not in labels:
			labels.append(label)
	return labels


class ProductCreate(BaseModel):
	name: str = Field(min_length=1, max_length=200)
	slug: Optional[str] = Field(default=None, max_length=220)
	category: str = Field(min_length=1, max_length=120)
	brand: Optional[str] = Field(default=None, max_length=120)
	description: Optional[str] = Field(default=None, max_length=5000)
	images: list[str] = Field(default_factory=list)
	tags: list[str] = Field(default_factory=lambda: ["new arrival"])
	price: float = Field(ge=0)
	list_price: float = Field(ge=0)
	count_in_stock: int = Field(default=0, ge=0)
	is_published: bool = True

	@field_validator("name", mode="before")
	@classmethod
	def strip_name(cls, value: str) -> str:
		return value.strip()

	@field_validator("brand", "description", mode="before")
	@classmethod
	def normalize_optional_fields(cls, value: str | None) -> str | None:
		return _normalize_optional_text(value)

	@field_validator("category", mode="before")
	@classmethod
	def normalize_category(cls, value: str) -> str:
		return value.strip().lower()

	@field_validator("tags", mode="before")
	@classmethod
	def normalize_tags(cls, value: list[str] | None) -> list[str]:
		return _normalize_labels(value)

	@model_validator(mode="after")
	def fill_slug(self) -> ProductCreate:
		slug = (self.slug or "").strip().lower() or slugify(self.name)
		if not SLUG_PATTERN.fullmatch(slug):
			raise ValueError("slug may only contain lowercase letters, digits, and single hyphens.")
		self.slug = slug
		return self


class ProductRead(BaseModel):
	model_config = ConfigDict(from_attributes=True)

	id: int
	name: str
	slug: str
	category: str
	brand: Optional[str] = None
	description: Optional[str] = None
	images: list[str] = Field(default_factory=list)
	tags: list[str] = Field(default_factory=list)
	price: float
	list_price: float
	count_in_stock: int
	num_sales: int = 0
	avg_rating: float = 0
	num_reviews: int = 0
	created_at: datetime

	@field_serializer("created_at")
	def serialize_created_at(self, value: datetime) -> str:
		return _serialize_utc(value)


class ProductPage(BaseModel):
	items: list[ProductRead] = Field(default_factory=list)
	page: int = 1
	total_pages: int = 0
	total_products: int = 0
	from_: int = Field(default=0, serialization_alias="from")
	to: int = 0


class BrandRead(BaseModel):
	model_config = ConfigDict(from_attributes=True)

	id: int
	name: str
	slug: str
	logo: Optional[str] = None
	description: Optional[str] = None
	is_featured: bool = False


class BlogRead(BaseModel):
	model_config = ConfigDict(from_attributes=True)

	id: int
	title: str
	slug: str
	content: str
	category: Optional[str] = None
	tags: list[str] = Field(default_factory=list)
	views: int = 0
	created_at: datetime
	updated_at: datetime

	@field_serializer("created_at", "updated_at")
	def serialize_timestamps(self, value: datetime) -> str:
		return _serialize_utc(value)


class BlogPage(BaseModel):
	items: list[BlogRead] = Field(default_factory=list)
	page: int = 1
	total_pages: int = 0


class CacheStatsRead(BaseModel):
	model_config = ConfigDict(from_attributes=True)

	hits: int
	stale_hits: int
	misses: int
	refreshes: int
	failures: int
	size: int
	in_flight: int
