"""Thin async client for the Etsy Open API v3 endpoints used by the sync job.

Three calls are needed:
- POST the OAuth token endpoint to exchange a refresh token,
- GET the shop payments list (paged with limit/offset),
- GET a single shop order.

Token refresh failures raise EtsyTokenRefreshError. The read calls never
raise for HTTP or transport problems: they return None so the caller can
skip the unit of work and carry on.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

import httpx
from pydantic import ValidationError

from marketplace_sync.config import settings
from marketplace_sync.models.etsy import EtsyTokenResponse
from marketplace_sync.utils.logger import etsy_logger, logger


class EtsyTokenRefreshError(Exception):
    """Raised when the OAuth refresh for an integration cannot be completed."""

    def __init__(self, code: str, message: str):
        super().__init__(f"{code}: {message}")
        self.code = code
        self.message = message


class EtsyService:
    def __init__(
        self,
        http_client: Optional[httpx.AsyncClient] = None,
        *,
        api_base_url: Optional[str] = None,
        token_url: Optional[str] = None,
        timeout: Optional[float] = None,
        page_limit: Optional[int] = None,
        max_pages: Optional[int] = None,
    ):
        self.api_base_url = (api_base_url or settings.ETSY_API_BASE_URL).rstrip("/")
        self.token_url = token_url or settings.ETSY_TOKEN_URL
        self.timeout = timeout if timeout is not None else settings.ETSY_HTTP_TIMEOUT_SECONDS
        self.page_limit = page_limit or settings.ETSY_PAYMENTS_PAGE_LIMIT
        self.max_pages = max_pages or settings.ETSY_PAYMENTS_MAX_PAGES
        self._client = http_client
        self._owns_client = http_client is None

    async def __aenter__(self) -> "EtsyService":
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
            self._owns_client = True
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise RuntimeError("HTTP client not initialized. Use async context manager.")
        return self._client

    def _auth_headers(self, access_token: str, client_id: Optional[str]) -> Dict[str, str]:
        headers = {"Authorization": f"Bearer {access_token}"}
        if client_id:
            headers["x-api-key"] = client_id
        return headers

    async def refresh_access_token(self, client_id: str, refresh_token: str) -> EtsyTokenResponse:
        """Exchange a refresh token for a new access/refresh token pair."""
        if not refresh_token:
            raise EtsyTokenRefreshError("no_refresh_token", "Integration has no refresh token")

        payload = {
            "grant_type": "refresh_token",
            "client_id": client_id,
            "refresh_token": refresh_token,
        }
        etsy_logger.log_etsy_event(
            "token_refresh_request",
            "Refreshing Etsy access token",
            request_data=payload,
        )

        try:
            response = await self.client.post(
                self.token_url,
                json=payload,
                headers={"Content-Type": "application/json"},
                timeout=self.timeout,
            )
        except httpx.TimeoutException as exc:
            etsy_logger.log_etsy_event(
                "token_refresh_error",
                "Token refresh timed out",
                status="error",
                error=str(exc) or "timeout",
            )
            raise EtsyTokenRefreshError("timeout", "Token refresh timed out") from exc
        except httpx.RequestError as exc:
            error_msg = f"HTTP request failed: {exc}"
            etsy_logger.log_etsy_event(
                "token_refresh_error",
                "HTTP request error during token refresh",
                status="error",
                error=error_msg,
            )
            raise EtsyTokenRefreshError("network_error", error_msg) from exc

        if not response.is_success:
            error_detail = response.text[:2000]
            etsy_logger.log_etsy_event(
                "token_refresh_failed",
                f"Token refresh failed with status {response.status_code}",
                status="error",
                error=error_detail,
            )
            raise EtsyTokenRefreshError(
                str(response.status_code),
                f"Failed to refresh token: {error_detail}",
            )

        try:
            token = EtsyTokenResponse.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            msg = "Token refresh succeeded but response is missing access_token/expires_in"
            etsy_logger.log_etsy_event(
                "token_refresh_failed",
                msg,
                status="error",
                error=str(exc)[:2000],
            )
            raise EtsyTokenRefreshError("invalid_response", msg) from exc

        etsy_logger.log_etsy_event(
            "token_refresh_success",
            "Successfully refreshed Etsy access token",
            response_data={"access_token": token.access_token, "expires_in": token.expires_in},
            status="success",
        )
        return token

    async def _get_json(
        self,
        url: str,
        access_token: str,
        client_id: Optional[str],
        *,
        params: Optional[Dict[str, Any]] = None,
        event: str,
    ) -> Optional[Dict[str, Any]]:
        try:
            response = await self.client.get(
                url,
                headers=self._auth_headers(access_token, client_id),
                params=params,
                timeout=self.timeout,
            )
        except httpx.TimeoutException:
            etsy_logger.log_etsy_event(event, f"Timed out calling {url}", status="error", error="timeout")
            return None
        except httpx.RequestError as exc:
            etsy_logger.log_etsy_event(event, f"HTTP request failed for {url}", status="error", error=str(exc))
            return None

        if not response.is_success:
            etsy_logger.log_etsy_event(
                event,
                f"{url} returned status {response.status_code}",
                status="error",
                error=response.text[:500],
            )
            return None

        try:
            body = response.json()
        except ValueError:
            etsy_logger.log_etsy_event(event, f"{url} returned a non-JSON body", status="error", error="invalid_json")
            return None

        if not isinstance(body, dict):
            return None
        return body

    async def list_payments(
        self,
        shop_id: str,
        access_token: str,
        *,
        client_id: Optional[str] = None,
    ) -> Optional[List[Dict[str, Any]]]:
        """Return every payment for the shop, following limit/offset pages.

        None means the listing could not be read this cycle (any page failed).
        """
        url = f"{self.api_base_url}/application/shops/{shop_id}/payments"
        payments: List[Dict[str, Any]] = []
        offset = 0

        for page in range(1, self.max_pages + 1):
            body = await self._get_json(
                url,
                access_token,
                client_id,
                params={"limit": self.page_limit, "offset": offset},
                event="payments_list_failed",
            )
            if body is None:
                return None

            results = body.get("results") or []
            payments.extend(results)

            count = body.get("count")
            if not results or len(results) < self.page_limit:
                break
            if isinstance(count, int) and len(payments) >= count:
                break
            offset += len(results)
        else:
            logger.warning(
                "[etsy] shop=%s payments listing stopped at max_pages=%s (%s payments read)",
                shop_id,
                self.max_pages,
                len(payments),
            )

        logger.info("[etsy] shop=%s fetched %s payments", shop_id, len(payments))
        return payments

    async def get_order(
        self,
        shop_id: str,
        order_id: str,
        access_token: str,
        *,
        client_id: Optional[str] = None,
    ) -> Optional[Dict[str, Any]]:
        """Fetch one shop order.

        None means the call failed (transport error, timeout, non-success
        status). An empty dict means Etsy answered but returned no order.
        """
        url = f"{self.api_base_url}/application/shops/{shop_id}/orders/{order_id}"
        body = await self._get_json(url, access_token, client_id, event="order_detail_failed")
        if body is None:
            return None
        results = body.get("results") or []
        if not results or not isinstance(results[0], dict):
            return {}
        return results[0]
