"""Tests for the paymaster JSON-RPC client."""

import asyncio
import json

import httpx
import pytest

from paymaster_rpc import (
    PaymasterClient,
    PaymasterRPCError,
    UnexpectedTransactionType,
    build_execute_request,
    build_invoke_request,
    extract_invoke_typed_data,
)


ENDPOINT = "http://paymaster.test/"


def _rpc_response(request, result=None, error=None):
    body = json.loads(request.content)
    payload = {"jsonrpc": "2.0", "id": body["id"]}
    if error is not None:
        payload["error"] = error
    else:
        payload["result"] = result
    return httpx.Response(200, json=payload)


async def _call(handler, method_name, *args):
    async with PaymasterClient(ENDPOINT, transport=httpx.MockTransport(handler)) as client:
        return await getattr(client, method_name)(*args)


def test_is_available_sends_jsonrpc_envelope():
    seen = []

    def handler(request):
        seen.append(json.loads(request.content))
        return _rpc_response(request, result=True)

    assert asyncio.run(_call(handler, "is_available")) is True
    assert seen[0]["jsonrpc"] == "2.0"
    assert seen[0]["method"] == "paymaster_isAvailable"
    assert isinstance(seen[0]["id"], int)


@pytest.mark.parametrize(
    "handler",
    [
        lambda request: _rpc_response(request, result=False),
        lambda request: httpx.Response(500, text="internal"),
        lambda request: _rpc_response(request, error={"code": -32000, "message": "down"}),
    ],
)
def test_is_available_false_on_failure(handler):
    assert asyncio.run(_call(handler, "is_available")) is False


def test_is_available_false_when_unreachable():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    assert asyncio.run(_call(handler, "is_available")) is False


def test_build_transaction_returns_result():
    built = {"type": "invoke", "typed_data": {"message": {}}, "parameters": {}, "fee": {}}

    def handler(request):
        body = json.loads(request.content)
        assert body["method"] == "paymaster_buildTransaction"
        assert body["params"]["transaction"]["type"] == "invoke"
        return _rpc_response(request, result=built)

    request = build_invoke_request(0x1, [{"to": "0x2", "selector": "0x3", "calldata": []}], 0x4)
    assert asyncio.run(_call(handler, "build_transaction", request)) == built


def test_error_member_raises_with_code():
    def handler(request):
        return _rpc_response(
            request,
            error={"code": 55, "message": "Invalid transaction nonce", "data": "expected 0x5"},
        )

    with pytest.raises(PaymasterRPCError) as excinfo:
        asyncio.run(_call(handler, "execute_transaction", {}))
    assert excinfo.value.code == 55
    assert str(excinfo.value) == "JSON-RPC error 55: Invalid transaction nonce (expected 0x5)"


def test_http_error_carries_reason_phrase():
    def handler(request):
        return httpx.Response(503, text="try later")

    with pytest.raises(PaymasterRPCError, match="503 Service Unavailable"):
        asyncio.run(_call(handler, "build_transaction", {}))


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(200, text="<html>not json</html>"),
        httpx.Response(200, json=[1, 2, 3]),
        httpx.Response(200, json={"jsonrpc": "2.0", "id": 1}),
        httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "result": "0xdead"}),
    ],
)
def test_malformed_responses_raise_protocol_errors(response):
    def handler(request):
        return response

    with pytest.raises(PaymasterRPCError, match="JSON-RPC error"):
        asyncio.run(_call(handler, "execute_transaction", {}))


def test_client_must_be_started():
    client = PaymasterClient(ENDPOINT)
    with pytest.raises(RuntimeError):
        asyncio.run(client.build_transaction({}))


def test_execute_request_shape():
    request = build_execute_request(0x10, {"message": {}}, [0xA, 0xB], 0x20)
    assert request == {
        "transaction": {
            "type": "invoke",
            "invoke": {
                "user_address": "0x10",
                "typed_data": {"message": {}},
                "signature": ["0xa", "0xb"],
            },
        },
        "parameters": {"version": "0x1", "fee_mode": {"mode": "default", "gas_token": "0x20"}},
    }


class TestExtractInvokeTypedData:
    def test_returns_typed_data(self):
        assert extract_invoke_typed_data({"type": "invoke", "typed_data": {"a": 1}}) == {"a": 1}

    def test_other_variant_is_contract_breach(self):
        with pytest.raises(UnexpectedTransactionType):
            extract_invoke_typed_data({"type": "deploy_and_invoke"})

    def test_missing_typed_data(self):
        with pytest.raises(PaymasterRPCError):
            extract_invoke_typed_data({"type": "invoke"})

    def test_non_object(self):
        with pytest.raises(PaymasterRPCError):
            extract_invoke_typed_data(None)

    def test_deploy_variant_is_contract_breach(self):
        with pytest.raises(UnexpectedTransactionType):
            extract_invoke_typed_data({"type": "deploy", "deployment": {}})

    @pytest.mark.parametrize(
        "response",
        [
            {"typed_data": {}},
            {"type": "garbage", "typed_data": {}},
            {"type": None, "typed_data": {}},
        ],
    )
    def test_missing_or_unknown_type_is_protocol_error(self, response):
        with pytest.raises(PaymasterRPCError, match="JSON-RPC error"):
            extract_invoke_typed_data(response)
