from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

import aiohttp

from degen_executor.common import log_event, sanitize_text

from .types import AttemptParams

_RETRYABLE_STATUSES = {500, 502, 503, 504}


class RoutingError(RuntimeError):
    pass


class RoutingRateLimitError(RoutingError):
    def __init__(self, message: str, *, retry_after_seconds: float | None = None) -> None:
        super().__init__(message)
        self.retry_after_seconds = retry_after_seconds


class RoutingNoRouteError(RoutingError):
    pass


class RoutingRequestError(RoutingError):
    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


def _parse_retry_after_seconds(raw: str | None) -> float | None:
    if raw is None:
        return None
    try:
        seconds = float(raw.strip())
    except ValueError:
        return None
    return seconds if seconds > 0 else None


def _preview(text: str, *, limit: int = 240) -> str:
    return sanitize_text(text or "")[:limit]


def _is_no_route_text(text: str) -> bool:
    normalized = (text or "").lower()
    return (
        "no_routes_found" in normalized
        or "could_not_find_any_route" in normalized
        or "could not find any route" in normalized
        or "no route" in normalized
        or "token_not_tradable" in normalized
        or "not tradable" in normalized
    )


class JupiterRoutingClient:
    """Quote and swap-instruction calls against the Jupiter Swap API."""

    def __init__(
        self,
        *,
        logger: logging.Logger,
        api_base_url: str,
        api_key: str,
        timeout_seconds: float = 10.0,
        max_retries: int = 2,
        retry_backoff_seconds: float = 0.5,
        max_retry_after_seconds: float = 10.0,
    ) -> None:
        self._logger = logger
        self._api_base_url = api_base_url.rstrip("/")
        self._api_key = api_key
        self._timeout_seconds = timeout_seconds
        self._max_retries = max(0, max_retries)
        self._retry_backoff_seconds = retry_backoff_seconds
        self._max_retry_after_seconds = max_retry_after_seconds
        self._session: aiohttp.ClientSession | None = None

    @property
    def quote_endpoint(self) -> str:
        return f"{self._api_base_url}/swap/v1/quote"

    @property
    def swap_instructions_endpoint(self) -> str:
        return f"{self._api_base_url}/swap/v1/swap-instructions"

    async def connect(self) -> None:
        if not self._api_key:
            raise ValueError("JUPITER_API_KEY is required.")
        if self._session is None:
            timeout = aiohttp.ClientTimeout(total=self._timeout_seconds)
            self._session = aiohttp.ClientSession(timeout=timeout)

    async def close(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None

    def _headers(self) -> dict[str, str]:
        return {"Accept": "application/json", "x-api-key": self._api_key}

    async def _request(
        self,
        *,
        operation: str,
        method: str,
        url: str,
        params: dict[str, str] | None = None,
        json_body: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        if self._session is None:
            await self.connect()
        if self._session is None:
            raise RuntimeError("Routing HTTP session is not initialized.")

        max_attempts = self._max_retries + 1
        for attempt in range(1, max_attempts + 1):
            try:
                async with self._session.request(
                    method,
                    url,
                    params=params,
                    json=json_body,
                    headers=self._headers(),
                ) as response:
                    status = response.status
                    retry_after_seconds = _parse_retry_after_seconds(response.headers.get("Retry-After"))
                    body = await response.text()
            except (aiohttp.ClientError, asyncio.TimeoutError) as error:
                if attempt < max_attempts:
                    log_event(
                        self._logger,
                        level="warning",
                        event="routing_network_retry",
                        message="Routing request failed; retrying",
                        operation=operation,
                        attempt=attempt,
                        max_attempts=max_attempts,
                        error=str(error) or type(error).__name__,
                    )
                    await asyncio.sleep(self._retry_backoff_seconds * attempt)
                    continue
                raise RoutingRequestError(f"{operation} request failed: {error or type(error).__name__}") from error

            if status == 429:
                sleep_seconds = min(
                    self._max_retry_after_seconds,
                    retry_after_seconds or self._retry_backoff_seconds * attempt,
                )
                if attempt < max_attempts:
                    log_event(
                        self._logger,
                        level="warning",
                        event="routing_rate_limited",
                        message="Routing service rate limited the request; backing off",
                        operation=operation,
                        attempt=attempt,
                        retry_after_seconds=sleep_seconds,
                    )
                    await asyncio.sleep(sleep_seconds)
                    continue
                raise RoutingRateLimitError(
                    f"{operation} rate limited: body={_preview(body)!r}",
                    retry_after_seconds=retry_after_seconds,
                )

            if status in _RETRYABLE_STATUSES and attempt < max_attempts:
                sleep_seconds = retry_after_seconds or self._retry_backoff_seconds * attempt
                log_event(
                    self._logger,
                    level="warning",
                    event="routing_status_retry",
                    message="Routing service returned retryable status",
                    operation=operation,
                    attempt=attempt,
                    status=status,
                    retry_after_seconds=sleep_seconds,
                    body_preview=_preview(body, limit=200),
                )
                await asyncio.sleep(sleep_seconds)
                continue

            return self._parse_body(operation=operation, status=status, body=body)

        raise RoutingRequestError(f"{operation} exhausted {max_attempts} attempts")

    @staticmethod
    def _parse_body(*, operation: str, status: int, body: str) -> dict[str, Any]:
        try:
            data: Any = json.loads(body) if body else {}
        except json.JSONDecodeError:
            data = None

        if status in {401, 403}:
            raise RoutingRequestError(
                f"{operation} authentication failed; check JUPITER_API_KEY",
                status=status,
            )
        if status >= 400 or (isinstance(data, dict) and data.get("error")):
            detail = str(data) if isinstance(data, dict) else _preview(body, limit=300)
            if _is_no_route_text(detail):
                raise RoutingNoRouteError(f"{operation} found no route: {detail}")
            raise RoutingRequestError(f"{operation} failed: status={status} body={detail}", status=status)
        if not isinstance(data, dict):
            raise RoutingRequestError(
                f"{operation} returned a non-JSON body: {_preview(body, limit=300)!r}",
                status=status,
            )
        return data

    async def quote(
        self,
        *,
        input_mint: str,
        output_mint: str,
        amount: int,
        params: AttemptParams,
    ) -> dict[str, Any]:
        query = {
            "inputMint": input_mint,
            "outputMint": output_mint,
            "amount": str(amount),
            "slippageBps": str(params.slippage_bps),
            "swapMode": "ExactIn",
            "restrictIntermediateTokens": "true",
        }
        if params.max_accounts is not None:
            query["maxAccounts"] = str(params.max_accounts)
        if params.only_direct_routes:
            query["onlyDirectRoutes"] = "true"

        data = await self._request(operation="quote", method="GET", url=self.quote_endpoint, params=query)
        if "outAmount" not in data or "otherAmountThreshold" not in data:
            raise RoutingRequestError(f"Unexpected quote response: {data}")
        return data

    async def swap_instructions(
        self,
        *,
        quote_response: dict[str, Any],
        user_public_key: str,
        destination_token_account: str,
    ) -> dict[str, Any]:
        payload = {
            "quoteResponse": quote_response,
            "userPublicKey": user_public_key,
            "destinationTokenAccount": destination_token_account,
            "dynamicComputeUnitLimit": True,
            "prioritizationFeeLamports": "auto",
        }
        data = await self._request(
            operation="swap-instructions",
            method="POST",
            url=self.swap_instructions_endpoint,
            json_body=payload,
        )
        if not isinstance(data.get("swapInstruction"), dict):
            raise RoutingRequestError(f"swapInstruction is missing in swap-instructions response: {data}")
        return data
