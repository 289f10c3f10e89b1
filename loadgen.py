from __future__ import annotations

import asyncio
import enum
import logging
import time
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Awaitable, Callable, Optional

import httpx
from starknet_py.hash.selector import get_selector_from_name

from paymaster_rpc import (
    PaymasterClient,
    PaymasterRPCError,
    UnexpectedTransactionType,
    build_execute_request,
    build_invoke_request,
    extract_invoke_typed_data,
)
from signer import StarkSigner


logger = logging.getLogger(__name__)

DEFAULT_USER_ADDRESS = "0x059e0eaf58972c3b7de923ad6a280476430295f7ea967b768bd381bf5d90d50b"
DEFAULT_STRK_TOKEN = "0x04718f5a0fc34cc1af16a1cdee98ffb20c31f5cd61d6ab07201858f4287c938d"
DEFAULT_RECIPIENT = "0x03f27a34e5e5483bf91257a3232ba753cc94e5b4ca19f8e200e8387e4a2ce555"
TRANSFER_SELECTOR = get_selector_from_name("transfer")


class ErrorKind(enum.Enum):
    NONCE_CONFLICT = "nonce_conflicts"
    TIMEOUT = "timeouts"
    SERVICE_UNAVAILABLE = "relayer_exhaustion"
    PROTOCOL_ERROR = "json_rpc_errors"
    OTHER = "other"


@dataclass(frozen=True)
class Outcome:
    latency_ms: Optional[float] = None
    error_kind: Optional[ErrorKind] = None

    def __post_init__(self) -> None:
        # exactly one of latency_ms / error_kind
        if (self.latency_ms is None) == (self.error_kind is None):
            raise ValueError(
                "Outcome needs either latency_ms or error_kind, got "
                f"latency_ms={self.latency_ms!r}, error_kind={self.error_kind!r}"
            )

    @classmethod
    def success(cls, latency_ms: float) -> Outcome:
        return cls(latency_ms=max(0.0, float(latency_ms)))

    @classmethod
    def failure(cls, kind: ErrorKind) -> Outcome:
        return cls(error_kind=kind)

    @property
    def ok(self) -> bool:
        return self.error_kind is None


def classify_error(exc: BaseException) -> ErrorKind:
    description = str(exc).lower()
    if "nonce" in description:
        return ErrorKind.NONCE_CONFLICT
    if isinstance(exc, httpx.TimeoutException):
        return ErrorKind.TIMEOUT
    if "timeout" in description or "timed out" in description:
        return ErrorKind.TIMEOUT
    if isinstance(exc, httpx.ConnectError):
        return ErrorKind.SERVICE_UNAVAILABLE
    if "relayer" in description or "unavailable" in description:
        return ErrorKind.SERVICE_UNAVAILABLE
    if isinstance(exc, PaymasterRPCError) or "json-rpc error" in description:
        return ErrorKind.PROTOCOL_ERROR
    return ErrorKind.OTHER


@dataclass(frozen=True)
class Call:
    to: int
    selector: int
    calldata: tuple[int, ...] = ()

    def to_rpc(self) -> dict[str, Any]:
        return {
            "to": hex(self.to),
            "selector": hex(self.selector),
            "calldata": [hex(value) for value in self.calldata],
        }


def transfer_call(token: int, recipient: int, amount: int = 1) -> Call:
    # u256 amount as (low, high)
    low = amount & ((1 << 128) - 1)
    high = amount >> 128
    return Call(to=token, selector=TRANSFER_SELECTOR, calldata=(recipient, low, high))


@dataclass(frozen=True)
class SubmissionSettings:
    user_address: int
    gas_token: int
    call: Call
    calls_rpc: list[dict[str, Any]] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "calls_rpc", [self.call.to_rpc()])


class RatePacer:
    """Emits tick indices every ``1 / rate`` seconds while inside the window.

    Tick ``k`` is due at ``start + k / rate``. Ticks that come due late fire
    immediately; the schedule itself never shifts. Iteration ends once the
    window has fully elapsed.
    """

    def __init__(
        self,
        rate: int,
        window_s: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        if rate < 1:
            raise ValueError(f"rate must be >= 1, got {rate}")
        self.rate = rate
        self.window_s = window_s
        self.period_s = 1.0 / rate
        self._clock = clock
        self._sleep = sleep

    async def ticks(self) -> AsyncIterator[int]:
        started = self._clock()
        tick_index = 0
        while True:
            offset = tick_index * self.period_s
            if offset >= self.window_s:
                remaining = started + self.window_s - self._clock()
                if remaining > 0:
                    await self._sleep(remaining)
                return
            delay = started + offset - self._clock()
            if delay > 0:
                await self._sleep(delay)
            if self._clock() - started >= self.window_s:
                return
            yield tick_index
            tick_index += 1


async def submit_transaction(
    client: PaymasterClient,
    signer: StarkSigner,
    settings: SubmissionSettings,
) -> Outcome:
    start = time.perf_counter()
    try:
        built = await client.build_transaction(
            build_invoke_request(
                user_address=settings.user_address,
                calls=settings.calls_rpc,
                gas_token=settings.gas_token,
            )
        )
        typed_data = extract_invoke_typed_data(built)
        signature = await asyncio.to_thread(
            signer.sign_typed_data, typed_data, settings.user_address
        )
        await client.execute_transaction(
            build_execute_request(
                user_address=settings.user_address,
                typed_data=typed_data,
                signature=signature,
                gas_token=settings.gas_token,
            )
        )
    except UnexpectedTransactionType:
        raise
    except Exception as exc:  # noqa: BLE001
        kind = classify_error(exc)
        logger.debug("Submission failed (%s): %s", kind.value, exc)
        return Outcome.failure(kind)
    return Outcome.success((time.perf_counter() - start) * 1000.0)
