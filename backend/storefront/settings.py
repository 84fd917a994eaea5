from functools import lru_cache
from pathlib import Path
from urllib.parse import urlparse

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


LOCAL_ORIGINS = ["http://localhost:3000", "http://127.0.0.1:3000"]
LOCAL_HOSTS = ["localhost", "127.0.0.1"]
DATA_DIR = Path(__file__).resolve().parent.parent / "data"
DEFAULT_DATABASE_URL = f"sqlite:///{DATA_DIR / 'storefront.db'}"


def _split_csv(value: str | None) -> list[str]:
	return [item.strip() for item in (value or "").split(",") if item.strip()]


def _normalize_origin(value: str) -> str:
	parsed = urlparse(value.strip())
	if parsed.scheme not in {"http", "https"} or not parsed.netloc:
		raise ValueError(f"Invalid origin: {value!r}")
	return f"{parsed.scheme}://{parsed.netloc}"


def _host_from_origin(value: str) -> str:
	hostname = urlparse(value).hostname
	if not hostname:
		raise ValueError(f"Invalid origin host: {value!r}")
	return hostname


def _unique(values: list[str]) -> list[str]:
	return list(dict.fromkeys(values))


class Settings(BaseSettings):
	"""Runtime configuration for the storefront catalog API."""

	model_config = SettingsConfigDict(
		env_file=".env",
		env_prefix="STOREFRONT_",
		extra="ignore",
	)

	app_env: str = "development"
	api_token: SecretStr | None = None
	public_origin: str | None = None
	allowed_origins: str | None = None
	allowed_hosts: str | None = None
	database_url: str = DEFAULT_DATABASE_URL
	cache_ttl_ms: int = 10_000
	query_timeout_seconds: float = 10.0
	page_size: int = 9

	@property
	def is_production(self) -> bool:
		return self.app_env.strip().lower() == "production"

	def api_token_value(self) -> str | None:
		if self.api_token is None:
			return None

		token = self.api_token.get_secret_value().strip()
		return token or None

	def query_timeout(self) -> float | None:
		if self.query_timeout_seconds <= 0:
			return None
		return self.query_timeout_seconds

	def cors_origins(self) -> list[str]:
		configured_origins = [_normalize_origin(item) for item in _split_csv(self.allowed_origins)]
		if configured_origins:
			return configured_origins

		if self.public_origin:
			return [_normalize_origin(self.public_origin)]

		if self.is_production:
			return []

		return LOCAL_ORIGINS.copy()

	def trusted_hosts(self) -> list[str]:
		configured_hosts = _split_csv(self.allowed_hosts)
		if configured_hosts:
			return configured_hosts

		derived_hosts = [_host_from_origin(origin) for origin in self.cors_origins()]
		if not self.is_production:
			derived_hosts.extend(LOCAL_HOSTS)

		return _unique(derived_hosts or LOCAL_HOSTS.copy())

	def is_allowed_origin(self, origin: str) -> bool:
		try:
			normalized_origin = _normalize_origin(origin)
		except ValueError:
			return False

		return normalized_origin in self.cors_origins()

	def validate_runtime(self) -> None:
		if self.cache_ttl_ms <= 0:
			raise ValueError("STOREFRONT_CACHE_TTL_MS must be a positive number of milliseconds.")

		if self.page_size <= 0:
			raise ValueError("STOREFRONT_PAGE_SIZE must be positive.")

		if self.is_production and not (self.public_origin or self.allowed_origins or self.allowed_hosts):
			raise ValueError(
				"Production mode requires STOREFRONT_PUBLIC_ORIGIN, "
				"STOREFRONT_ALLOWED_ORIGINS, or STOREFRONT_ALLOWED_HOSTS.",
			)

		if self.is_production and not self.api_token_value():
			raise ValueError("Production mode requires STOREFRONT_API_TOKEN.")


@lru_cache
def get_settings() -> Settings:
	return Settings()
