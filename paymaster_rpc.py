from __future__ import annotations

import itertools
import logging
from typing import Any, Optional

import httpx


logger = logging.getLogger(__name__)

IS_AVAILABLE_METHOD = "paymaster_isAvailable"
BUILD_TRANSACTION_METHOD = "paymaster_buildTransaction"
EXECUTE_TRANSACTION_METHOD = "paymaster_executeTransaction"

# Valid SNIP-29 build variants this tool never requests
OTHER_TRANSACTION_TYPES = ("deploy", "deploy_and_invoke")


class PaymasterRPCError(Exception):
    """Raised for HTTP failures, JSON-RPC error members and malformed bodies."""

    def __init__(self, message: str, code: Optional[int] = None) -> None:
        super().__init__(message)
        self.code = code


class UnexpectedTransactionType(RuntimeError):
    """The build call answered with a transaction kind other than the one requested."""


def to_hex(value: int) -> str:
    return hex(value)


def _execution_parameters(gas_token: int) -> dict[str, Any]:
    return {
        "version": "0x1",
        "fee_mode": {"mode": "default", "gas_token": to_hex(gas_token)},
    }


def build_invoke_request(
    user_address: int,
    calls: list[dict[str, Any]],
    gas_token: int,
) -> dict[str, Any]:
    return {
        "transaction": {
            "type": "invoke",
            "invoke": {"user_address": to_hex(user_address), "calls": calls},
        },
        "parameters": _execution_parameters(gas_token),
    }


def build_execute_request(
    user_address: int,
    typed_data: dict[str, Any],
    signature: list[int],
    gas_token: int,
) -> dict[str, Any]:
    return {
        "transaction": {
            "type": "invoke",
            "invoke": {
                "user_address": to_hex(user_address),
                "typed_data": typed_data,
                "signature": [to_hex(part) for part in signature],
            },
        },
        "parameters": _execution_parameters(gas_token),
    }


def extract_invoke_typed_data(response: Any) -> dict[str, Any]:
    if not isinstance(response, dict):
        raise PaymasterRPCError(
            f"JSON-RPC error: malformed build response of type {type(response).__name__}"
        )
    tx_type = response.get("type")
    if tx_type in OTHER_TRANSACTION_TYPES:
        raise UnexpectedTransactionType(
            f"build_transaction returned '{tx_type}' for an invoke request"
        )
    if tx_type != "invoke":
        raise PaymasterRPCError(
            f"JSON-RPC error: build response has unknown transaction type {tx_type!r}"
        )
    typed_data = response.get("typed_data")
    if not isinstance(typed_data, dict):
        raise PaymasterRPCError("JSON-RPC error: build response is missing typed_data")
    return typed_data


class PaymasterClient:
    """JSON-RPC 2.0 client for a paymaster service.

    One instance (and its underlying ``httpx.AsyncClient``) is shared by every
    concurrent submission; calls carry no per-request state besides the id.
    """

    def __init__(
        self,
        endpoint: str,
        timeout_s: float = 30.0,
        limits: Optional[httpx.Limits] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.endpoint = endpoint
        self.timeout_s = timeout_s
        self._limits = limits
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._ids = itertools.count(start=1)

    async def __aenter__(self) -> PaymasterClient:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def start(self) -> None:
        if self._client is not None:
            return
        kwargs: dict[str, Any] = {"timeout": self.timeout_s}
        if self._limits is not None:
            kwargs["limits"] = self._limits
        if self._transport is not None:
            kwargs["transport"] = self._transport
        self._client = httpx.AsyncClient(**kwargs)

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def is_available(self) -> bool:
        try:
            result = await self._call(IS_AVAILABLE_METHOD, {})
        except (httpx.HTTPError, PaymasterRPCError) as exc:
            logger.debug("Liveness probe against %s failed: %s", self.endpoint, exc)
            return False
        return result is True

    async def build_transaction(self, request: dict[str, Any]) -> dict[str, Any]:
        result = await self._call(BUILD_TRANSACTION_METHOD, request)
        if not isinstance(result, dict):
            raise PaymasterRPCError("JSON-RPC error: build result is not an object")
        return result

    async def execute_transaction(self, request: dict[str, Any]) -> dict[str, Any]:
        result = await self._call(EXECUTE_TRANSACTION_METHOD, request)
        if not isinstance(result, dict):
            raise PaymasterRPCError("JSON-RPC error: execute result is not an object")
        return result

    async def _call(self, method: str, params: dict[str, Any]) -> Any:
        if self._client is None:
            raise RuntimeError("PaymasterClient used before start()")

        request_id = next(self._ids)
        payload = {"jsonrpc": "2.0", "id": request_id, "method": method, "params": params}
        response = await self._client.post(self.endpoint, json=payload)
        if response.status_code >= 400:
            body = response.text[:500]
            raise PaymasterRPCError(
                f"HTTP {response.status_code} {response.reason_phrase}: {body}"
            )

        try:
            body = response.json()
        except ValueError as exc:
            raise PaymasterRPCError(f"JSON-RPC error: invalid response body: {exc}") from exc
        if not isinstance(body, dict):
            raise PaymasterRPCError("JSON-RPC error: response is not an object")

        error = body.get("error")
        if error is not None:
            if isinstance(error, dict):
                code = error.get("code")
                message = error.get("message", "")
                data = error.get("data")
                detail = f"{message} ({data})" if data else str(message)
                raise PaymasterRPCError(
                    f"JSON-RPC error {code}: {detail}",
                    code=code if isinstance(code, int) else None,
                )
            raise PaymasterRPCError(f"JSON-RPC error: {error}")

        if "result" not in body:
            raise PaymasterRPCError("JSON-RPC error: response has neither result nor error")
        return body["result"]
