import asyncio

from sqlalchemy.engine import Engine
from sqlmodel import SQLModel, create_engine

from storefront.settings import DATA_DIR, get_settings


def build_engine(database_url: str) -> Engine:
	if database_url.startswith("sqlite"):
		DATA_DIR.mkdir(parents=True, exist_ok=True)
		return create_engine(
			database_url,
			connect_args={"check_same_thread": False},
		)
	return create_engine(database_url, pool_pre_ping=True)


engine = build_engine(get_settings().database_url)
_schema_ready: set[int] = set()


def init_db(target: Engine | None = None) -> None:
	"""Create database tables on startup."""
	bound_engine = target or engine
	SQLModel.metadata.create_all(bound_engine)
	_schema_ready.add(id(bound_engine))


async def connect_to_database(target: Engine | None = None) -> None:
	"""Make sure the schema exists before the first query against an engine."""
	bound_engine = target or engine
	if id(bound_engine) in _schema_ready:
		return
	await asyncio.to_thread(init_db, bound_engine)
