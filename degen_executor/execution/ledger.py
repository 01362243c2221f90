from __future__ import annotations

import asyncio
import base64
import logging
from dataclasses import dataclass
from typing import Any

import aiohttp
from solders.address_lookup_table_account import AddressLookupTableAccount
from solders.pubkey import Pubkey

from degen_executor.common import log_event

from .constants import CLAIM_STATUS_VRF_READY, DEGEN_CLAIM_DISCRIMINATOR
from .layouts import (
    DEGEN_CLAIM_ACCOUNT_SIZE,
    DEGEN_CLAIM_STATUS_OFFSET,
    DegenClaim,
    parse_degen_claim,
    parse_lookup_table_addresses,
    parse_token_amount,
)

_RETRYABLE_HTTP_STATUSES = {429, 500, 502, 503, 504}


class RpcMethodError(RuntimeError):
    def __init__(
        self,
        *,
        method: str,
        message: str,
        status: int | None = None,
        code: int | None = None,
        data: Any = None,
    ) -> None:
        super().__init__(message)
        self.method = method
        self.status = status
        self.code = code
        self.data = data


@dataclass(slots=True, frozen=True)
class AccountSnapshot:
    address: Pubkey
    owner: Pubkey
    lamports: int
    data: bytes


@dataclass(slots=True, frozen=True)
class LatestBlockhash:
    blockhash: str
    last_valid_block_height: int | None


def _error_payload_to_message(payload: Any) -> str:
    if isinstance(payload, dict):
        message = payload.get("message")
        if message:
            return str(message)
    return str(payload)


def _decode_account(address: Pubkey, value: Any) -> AccountSnapshot | None:
    if not isinstance(value, dict):
        return None
    raw_data = value.get("data")
    if not isinstance(raw_data, list) or not raw_data:
        raise RpcMethodError(method="getAccountInfo", message=f"Unexpected account data for {address}: {raw_data}")
    return AccountSnapshot(
        address=address,
        owner=Pubkey.from_string(str(value.get("owner"))),
        lamports=int(value.get("lamports") or 0),
        data=base64.b64decode(str(raw_data[0])),
    )


class LedgerClient:
    """JSON-RPC access to the cluster over a shared aiohttp session."""

    def __init__(
        self,
        *,
        logger: logging.Logger,
        rpc_url: str,
        request_timeout_seconds: float = 15.0,
        max_retries: int = 2,
        retry_backoff_seconds: float = 0.5,
        commitment: str = "confirmed",
    ) -> None:
        self._logger = logger
        self._rpc_url = rpc_url
        self._request_timeout_seconds = request_timeout_seconds
        self._max_retries = max(0, max_retries)
        self._retry_backoff_seconds = retry_backoff_seconds
        self._commitment = commitment
        self._http_session: aiohttp.ClientSession | None = None
        self._request_id = 0

    async def connect(self) -> None:
        if not self._rpc_url:
            raise ValueError("RPC_URL is required.")
        if self._http_session is None:
            timeout = aiohttp.ClientTimeout(total=self._request_timeout_seconds)
            self._http_session = aiohttp.ClientSession(timeout=timeout)

    async def close(self) -> None:
        if self._http_session is not None:
            await self._http_session.close()
            self._http_session = None

    async def healthcheck(self) -> None:
        await self.get_latest_blockhash()

    async def _rpc_call(self, method: str, params: list[Any] | None = None) -> Any:
        if self._http_session is None:
            await self.connect()
        if self._http_session is None:
            raise RuntimeError("RPC HTTP session is not initialized.")

        self._request_id += 1
        payload: dict[str, Any] = {
            "jsonrpc": "2.0",
            "id": self._request_id,
            "method": method,
            "params": params or [],
        }

        max_attempts = self._max_retries + 1
        for attempt in range(1, max_attempts + 1):
            try:
                async with self._http_session.post(self._rpc_url, json=payload) as response:
                    status = response.status
                    body = await response.json(content_type=None)
            except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as error:
                if attempt < max_attempts:
                    log_event(
                        self._logger,
                        level="warning",
                        event="rpc_network_retry",
                        message="RPC request failed; retrying",
                        method=method,
                        attempt=attempt,
                        max_attempts=max_attempts,
                        error=str(error),
                    )
                    await asyncio.sleep(self._retry_backoff_seconds * attempt)
                    continue
                raise RpcMethodError(method=method, message=f"RPC network error for {method}: {error}") from error

            if status in _RETRYABLE_HTTP_STATUSES and attempt < max_attempts:
                log_event(
                    self._logger,
                    level="warning",
                    event="rpc_status_retry",
                    message="RPC endpoint returned retryable status",
                    method=method,
                    attempt=attempt,
                    status=status,
                )
                await asyncio.sleep(self._retry_backoff_seconds * attempt)
                continue
            break

        if status >= 400:
            raise RpcMethodError(
                method=method,
                status=status,
                data=body,
                message=f"RPC call failed: method={method} status={status} body={body}",
            )
        if not isinstance(body, dict):
            raise RpcMethodError(method=method, data=body, message=f"Invalid RPC response for {method}: {body}")

        error_payload = body.get("error")
        if error_payload:
            code = error_payload.get("code") if isinstance(error_payload, dict) else None
            raise RpcMethodError(
                method=method,
                code=int(code) if isinstance(code, int) else None,
                data=error_payload,
                message=f"RPC error for {method}: {_error_payload_to_message(error_payload)}",
            )

        return body.get("result")

    async def get_account(self, address: Pubkey) -> AccountSnapshot | None:
        result = await self._rpc_call(
            "getAccountInfo",
            [str(address), {"encoding": "base64", "commitment": self._commitment}],
        )
        if not isinstance(result, dict):
            raise RpcMethodError(method="getAccountInfo", message=f"Unexpected getAccountInfo response: {result}")
        return _decode_account(address, result.get("value"))

    async def get_account_owner(self, address: Pubkey) -> Pubkey | None:
        snapshot = await self.get_account(address)
        return snapshot.owner if snapshot is not None else None

    async def get_multiple_accounts(self, addresses: list[Pubkey]) -> list[AccountSnapshot | None]:
        if not addresses:
            return []
        result = await self._rpc_call(
            "getMultipleAccounts",
            [[str(address) for address in addresses], {"encoding": "base64", "commitment": self._commitment}],
        )
        values = result.get("value") if isinstance(result, dict) else None
        if not isinstance(values, list) or len(values) != len(addresses):
            raise RpcMethodError(method="getMultipleAccounts", message=f"Unexpected getMultipleAccounts response: {result}")
        return [_decode_account(address, value) for address, value in zip(addresses, values)]

    async def get_token_balance(self, address: Pubkey) -> int | None:
        """Raw token amount, or None when the account does not exist."""
        snapshot = await self.get_account(address)
        if snapshot is None:
            return None
        return parse_token_amount(snapshot.data)

    async def get_ready_claims(self, program_id: Pubkey) -> list[DegenClaim]:
        result = await self._rpc_call(
            "getProgramAccounts",
            [
                str(program_id),
                {
                    "encoding": "base64",
                    "commitment": self._commitment,
                    "filters": [
                        {"dataSize": DEGEN_CLAIM_ACCOUNT_SIZE},
                        {
                            "memcmp": {
                                "offset": 0,
                                "bytes": base64.b64encode(DEGEN_CLAIM_DISCRIMINATOR).decode("ascii"),
                                "encoding": "base64",
                            }
                        },
                        {
                            "memcmp": {
                                "offset": DEGEN_CLAIM_STATUS_OFFSET,
                                "bytes": base64.b64encode(bytes([CLAIM_STATUS_VRF_READY])).decode("ascii"),
                                "encoding": "base64",
                            }
                        },
                    ],
                },
            ],
        )
        if not isinstance(result, list):
            raise RpcMethodError(method="getProgramAccounts", message=f"Unexpected getProgramAccounts response: {result}")

        claims: list[DegenClaim] = []
        for item in result:
            if not isinstance(item, dict):
                continue
            address = Pubkey.from_string(str(item.get("pubkey")))
            snapshot = _decode_account(address, item.get("account"))
            if snapshot is None:
                continue
            claims.append(parse_degen_claim(address, snapshot.data))
        return claims

    async def get_claim(self, address: Pubkey) -> DegenClaim | None:
        snapshot = await self.get_account(address)
        if snapshot is None:
            return None
        return parse_degen_claim(address, snapshot.data)

    async def get_lookup_tables(self, addresses: list[str]) -> list[AddressLookupTableAccount]:
        keys = [Pubkey.from_string(address) for address in dict.fromkeys(addresses) if address]
        snapshots = await self.get_multiple_accounts(keys)
        tables: list[AddressLookupTableAccount] = []
        for key, snapshot in zip(keys, snapshots):
            if snapshot is None:
                raise RpcMethodError(method="getMultipleAccounts", message=f"Address lookup table not found: {key}")
            tables.append(AddressLookupTableAccount(key, parse_lookup_table_addresses(snapshot.data)))
        return tables

    async def get_latest_blockhash(self) -> LatestBlockhash:
        result = await self._rpc_call("getLatestBlockhash", [{"commitment": self._commitment}])
        value = result.get("value") if isinstance(result, dict) else None
        if not isinstance(value, dict) or not value.get("blockhash"):
            raise RpcMethodError(method="getLatestBlockhash", message=f"Unexpected getLatestBlockhash response: {result}")
        raw_height = value.get("lastValidBlockHeight")
        return LatestBlockhash(
            blockhash=str(value["blockhash"]),
            last_valid_block_height=int(raw_height) if isinstance(raw_height, int) else None,
        )

    async def get_block_height(self) -> int:
        result = await self._rpc_call("getBlockHeight", [{"commitment": self._commitment}])
        if not isinstance(result, int):
            raise RpcMethodError(method="getBlockHeight", message=f"Unexpected getBlockHeight response: {result}")
        return result

    async def simulate_transaction(self, signed_tx_base64: str) -> dict[str, Any]:
        result = await self._rpc_call(
            "simulateTransaction",
            [
                signed_tx_base64,
                {"encoding": "base64", "sigVerify": False, "commitment": "processed"},
            ],
        )
        value = result.get("value") if isinstance(result, dict) else None
        if not isinstance(value, dict):
            raise RpcMethodError(method="simulateTransaction", message=f"Unexpected simulateTransaction response: {result}")
        return value

    async def send_transaction(self, signed_tx_base64: str, *, max_retries: int) -> str:
        result = await self._rpc_call(
            "sendTransaction",
            [
                signed_tx_base64,
                {"encoding": "base64", "skipPreflight": True, "maxRetries": max(0, max_retries)},
            ],
        )
        if not isinstance(result, str) or not result:
            raise RpcMethodError(method="sendTransaction", message=f"Unexpected sendTransaction response: {result}")
        return result

    async def get_signature_status(
        self,
        signature: str,
        *,
        search_history: bool = False,
    ) -> dict[str, Any] | None:
        params: list[Any] = [[signature]]
        if search_history:
            params.append({"searchTransactionHistory": True})
        result = await self._rpc_call("getSignatureStatuses", params)
        values = result.get("value") if isinstance(result, dict) else None
        if not isinstance(values, list) or not values:
            raise RpcMethodError(method="getSignatureStatuses", message=f"Unexpected getSignatureStatuses response: {result}")
        status = values[0]
        return status if isinstance(status, dict) else None
