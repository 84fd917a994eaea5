from __future__ import annotations

from contextlib import asynccontextmanager
import logging
from typing import Annotated

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from starlette.middleware.trustedhost import TrustedHostMiddleware

from storefront.database import connect_to_database, engine, init_db
from storefront.schemas import (
	BlogPage,
	BlogRead,
	BrandRead,
	CacheStatsRead,
	ProductCreate,
	ProductPage,
	ProductRead,
)
from storefront.security import verify_api_token, verify_origin
from storefront.services.cache import QueryCache
from storefront.services.catalog import CatalogService, DuplicateSlugError
from storefront.settings import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
	settings.validate_runtime()
	init_db()

	query_cache = QueryCache(
		connect=connect_to_database,
		timeout_seconds=settings.query_timeout(),
	)
	app.state.query_cache = query_cache
	app.state.catalog = CatalogService(
		query_cache,
		engine,
		ttl_ms=settings.cache_ttl_ms,
		page_size=settings.page_size,
	)
	logger.info("Catalog cache ready with a %d ms freshness window.", settings.cache_ttl_ms)

	try:
		yield
	finally:
		await query_cache.aclose()


def get_catalog(request: Request) -> CatalogService:
	return request.app.state.catalog


def get_query_cache(request: Request) -> QueryCache:
	return request.app.state.query_cache


CatalogDependency = Annotated[CatalogService, Depends(get_catalog)]
QueryCacheDependency = Annotated[QueryCache, Depends(get_query_cache)]
OriginDependency = Annotated[None, Depends(verify_origin)]
TokenDependency = Annotated[None, Depends(verify_api_token)]

app = FastAPI(
	title="Storefront Catalog API",
	version="0.1.0",
	lifespan=lifespan,
)

app.add_middleware(
	TrustedHostMiddleware,
	allowed_hosts=settings.trusted_hosts() or ["localhost", "127.0.0.1"],
)

app.add_middleware(
	CORSMiddleware,
	allow_origins=settings.cors_origins(),
	allow_credentials=False,
	allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
	allow_headers=["Content-Type", "X-API-Key"],
)


def _is_public_read(request: Request) -> bool:
	return request.method == "GET" and not request.url.path.startswith("/api/cache")


@app.middleware("http")
async def add_security_headers(request: Request, call_next):
	response: Response = await call_next(request)
	if _is_public_read(request) and response.status_code == 200:
		response.headers["Cache-Control"] = f"public, max-age={settings.cache_ttl_ms // 1000}"
	else:
		response.headers["Cache-Control"] = "no-store"
		response.headers["Pragma"] = "no-cache"
	response.headers["Cross-Origin-Opener-Policy"] = "same-origin"
	response.headers["Cross-Origin-Resource-Policy"] = "same-origin"
	response.headers["Referrer-Policy"] = "same-origin"
	response.headers["X-Content-Type-Options"] = "nosniff"
	response.headers["X-Frame-Options"] = "DENY"
	if request.headers.get("x-forwarded-proto", request.url.scheme) == "https":
		response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
	return response


@app.get("/api/health")
def healthcheck() -> dict[str, str]:
	return {"status": "ok"}


@app.get("/api/categories", response_model=list[str])
async def list_categories(_: OriginDependency, catalog: CatalogDependency) -> list[str]:
	return await catalog.list_categories()


@app.get("/api/tags", response_model=list[str])
async def list_tags(_: OriginDependency, catalog: CatalogDependency) -> list[str]:
	return await catalog.list_tags()


@app.get("/api/brands", response_model=list[BrandRead])
async def list_brands(_: OriginDependency, catalog: CatalogDependency) -> list[BrandRead]:
	return await catalog.list_brands()


@app.get("/api/products", response_model=ProductPage)
async def list_products(
	_: OriginDependency,
	catalog: CatalogDependency,
	query: Annotated[str | None, Query(max_length=100)] = None,
	category: Annotated[str | None, Query(max_length=120)] = None,
	tag: Annotated[str | None, Query(max_length=60)] = None,
	price: Annotated[str | None, Query(max_length=40)] = None,
	rating: Annotated[float | None, Query(ge=0, le=5)] = None,
	sort: Annotated[str | None, Query(max_length=40)] = None,
	page: Annotated[int, Query(ge=1)] = 1,
	limit: Annotated[int | None, Query(ge=1, le=100)] = None,
) -> ProductPage:
	try:
		return await catalog.search_products(
			query=query,
			category=category,
			tag=tag,
			price=price,
			rating=rating,
			sort=sort,
			page=page,
			limit=limit,
		)
	except ValueError as exc:
		raise HTTPException(status_code=422, detail=str(exc)) from exc


@app.get("/api/products/tag/{tag}", response_model=list[ProductRead])
async def list_products_by_tag(
	tag: str,
	_: OriginDependency,
	catalog: CatalogDependency,
	limit: Annotated[int, Query(ge=1, le=100)] = 10,
) -> list[ProductRead]:
	return await catalog.products_by_tag(tag, limit=limit)


@app.get("/api/products/{slug}", response_model=ProductRead)
async def get_product(slug: str, _: OriginDependency, catalog: CatalogDependency) -> ProductRead:
	product = await catalog.get_product(slug)
	if product is None:
		raise HTTPException(status_code=404, detail="Product not found.")
	return product


@app.get("/api/products/{slug}/related", response_model=ProductPage)
async def list_related_products(
	slug: str,
	_: OriginDependency,
	catalog: CatalogDependency,
	page: Annotated[int, Query(ge=1)] = 1,
	limit: Annotated[int, Query(ge=1, le=50)] = 4,
) -> ProductPage:
	return await catalog.related_products(slug, page=page, limit=limit)


@app.post("/api/products", response_model=ProductRead, status_code=201)
async def create_product(
	payload: ProductCreate,
	_: TokenDependency,
	catalog: CatalogDependency,
) -> ProductRead:
	try:
		return await catalog.create_product(payload)
	except DuplicateSlugError as exc:
		raise HTTPException(status_code=409, detail=str(exc)) from exc


@app.get("/api/blogs", response_model=BlogPage)
async def list_blogs(
	_: OriginDependency,
	catalog: CatalogDependency,
	page: Annotated[int, Query(ge=1)] = 1,
	limit: Annotated[int, Query(ge=1, le=50)] = 9,
) -> BlogPage:
	return await catalog.list_blogs(page=page, limit=limit)


@app.get("/api/blogs/{slug}", response_model=BlogRead)
async def get_blog(slug: str, _: OriginDependency, catalog: CatalogDependency) -> BlogRead:
	blog = await catalog.get_blog(slug)
	if blog is None:
		raise HTTPException(status_code=404, detail="Blog post not found.")
	return blog


@app.get("/api/cache", response_model=CacheStatsRead)
async def get_cache_stats(_: TokenDependency, query_cache: QueryCacheDependency) -> CacheStatsRead:
	return CacheStatsRead.model_validate(query_cache.stats())


@app.delete("/api/cache", status_code=204)
async def clear_cache(_: TokenDependency, query_cache: QueryCacheDependency) -> Response:
	query_cache.clear()
	logger.info("Catalog cache cleared on request.")
	return Response(status_code=204)
