from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel


def utc_now() -> datetime:
	"""Return the current UTC timestamp."""
	return datetime.now(timezone.utc)


class Brand(SQLModel, table=True):
	id: Optional[int] = Field(default=None, primary_key=True)
	name: str = Field(max_length=120)
	slug: str = Field(unique=True, index=True, max_length=160)
	logo: Optional[str] = Field(default=None, max_length=500)
	description: Optional[str] = Field(default=None, max_length=2000)
	is_featured: bool = Field(default=False)
	created_at: datetime = Field(default_factory=utc_now, nullable=False)


class Product(SQLModel, table=True):
	id: Optional[int] = Field(default=None, primary_key=True)
	name: str = Field(max_length=200)
	slug: str = Field(unique=True, index=True, max_length=220)
	category: str = Field(index=True, max_length=120)
	brand: Optional[str] = Field(default=None, max_length=120)
	description: Optional[str] = Field(default=None)
	images: list[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
	tags: list[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
	price: float = Field(default=0)
	list_price: float = Field(default=0)
	count_in_stock: int = Field(default=0)
	num_sales: int = Field(default=0)
	avg_rating: float = Field(default=0)
	num_reviews: int = Field(default=0)
	is_published: bool = Field(default=True, index=True)
	created_at: datetime = Field(default_factory=utc_now, nullable=False, index=True)
	updated_at: datetime = Field(default_factory=utc_now, nullable=False)


class BlogPost(SQLModel, table=True):
	id: Optional[int] = Field(default=None, primary_key=True)
	title: str = Field(max_length=200)
	slug: str = Field(unique=True, index=True, max_length=220)
	content: str = Field(default="")
	category: Optional[str] = Field(default=None, max_length=120)
	tags: list[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
	views: int = Field(default=0)
	is_published: bool = Field(default=False, index=True)
	created_at: datetime = Field(default_factory=utc_now, nullable=False, index=True)
	updated_at: datetime = Field(default_factory=utc_now, nullable=False)
