from __future__ import annotations

import hmac
from typing import Annotated

from fastapi import Header, HTTPException, Request

from storefront.settings import get_settings


def verify_origin(request: Request) -> None:
	"""Reject browser requests coming from origins outside the allow list."""
	origin = request.headers.get("origin")
	if origin and not get_settings().is_allowed_origin(origin):
		raise HTTPException(status_code=403, detail="Origin not allowed.")


def verify_api_token(
	request: Request,
	x_api_key: Annotated[str | None, Header(alias="X-API-Key")] = None,
) -> None:
	"""Guard back-office routes with the shared server token."""
	verify_origin(request)

	expected_token = get_settings().api_token_value()
	if expected_token is None:
		if get_settings().is_production:
			raise HTTPException(status_code=503, detail="API token is required by the current server configuration.")
		return

	if x_api_key is None:
		raise HTTPException(status_code=401, detail="Missing API token.")

	if not hmac.compare_digest(x_api_key.strip(), expected_token):
		raise HTTPException(status_code=401, detail="Invalid API token.")
