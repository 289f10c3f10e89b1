from __future__ import annotations

import asyncio
import functools
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterator, Optional

import httpx

from loadgen import (
    DEFAULT_RECIPIENT,
    DEFAULT_STRK_TOKEN,
    DEFAULT_USER_ADDRESS,
    ErrorKind,
    Outcome,
    RatePacer,
    SubmissionSettings,
    submit_transaction,
    transfer_call,
)
from paymaster_rpc import PaymasterClient, UnexpectedTransactionType
from report import OverallSummary, StepRecord, compute_step_record, compute_summary
from signer import StarkSigner, parse_felt


logger = logging.getLogger(__name__)

SubmitFn = Callable[[], Awaitable[Outcome]]


class ServiceNotAvailable(RuntimeError):
    """The paymaster failed its liveness probe before any traffic was sent."""


@dataclass(frozen=True)
class RampPlan:
    max_rate: int
    total_duration_s: float
    step_count: int

    def __post_init__(self) -> None:
        if self.max_rate < 1:
            raise ValueError(f"max_rate must be >= 1, got {self.max_rate}")
        if self.total_duration_s <= 0:
            raise ValueError(f"total_duration_s must be > 0, got {self.total_duration_s}")
        if self.step_count < 1:
            raise ValueError(f"step_count must be >= 1, got {self.step_count}")

    @property
    def step_duration_s(self) -> float:
        return self.total_duration_s / self.step_count

    def target_rate(self, step_index: int) -> int:
        if not 1 <= step_index <= self.step_count:
            raise ValueError(f"step_index must be in [1, {self.step_count}], got {step_index}")
        return (self.max_rate * step_index) // self.step_count

    def target_rates(self) -> list[int]:
        return [self.target_rate(step) for step in range(1, self.step_count + 1)]

    def active_steps(self) -> Iterator[tuple[int, int]]:
        for step_index in range(1, self.step_count + 1):
            rate = self.target_rate(step_index)
            if rate > 0:
                yield step_index, rate


@dataclass
class RampTestResult:
    elapsed_s: float
    steps: list[StepRecord] = field(default_factory=list)
    summary: Optional[OverallSummary] = None


@dataclass
class RunConfig:
    private_key: str
    max_tps: int
    endpoint: str = "http://localhost:12777"
    duration_s: int = 5
    steps: int = 5
    user_address: str = DEFAULT_USER_ADDRESS
    gas_token: str = DEFAULT_STRK_TOKEN
    recipient: str = DEFAULT_RECIPIENT
    timeout_s: float = 30.0


async def run_step(
    *,
    target_rate: int,
    step_duration_s: float,
    submit: SubmitFn,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> StepRecord:
    pacer = RatePacer(target_rate, step_duration_s, clock=clock, sleep=sleep)

    tasks: list[asyncio.Task[Outcome]] = []
    async for _tick in pacer.ticks():
        tasks.append(asyncio.create_task(submit()))

    results = await asyncio.gather(*tasks, return_exceptions=True)

    outcomes: list[Outcome] = []
    fatal: Optional[UnexpectedTransactionType] = None
    for result in results:
        if isinstance(result, Outcome):
            outcomes.append(result)
        elif isinstance(result, UnexpectedTransactionType):
            if fatal is None:
                fatal = result
        elif isinstance(result, Exception):
            logger.warning("Submission task raised %r; counting it as a failure", result)
            outcomes.append(Outcome.failure(ErrorKind.OTHER))
        else:
            raise result

    if fatal is not None:
        raise fatal
    return compute_step_record(target_rate, outcomes)


async def run_ramp_test(
    plan: RampPlan,
    *,
    submit: SubmitFn,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> RampTestResult:
    test_start = clock()
    step_duration_s = plan.step_duration_s
    records: list[StepRecord] = []

    for step_index, target_rate in plan.active_steps():
        logger.info("Testing TPS: %d (step %d/%d)", target_rate, step_index, plan.step_count)
        record = await run_step(
            target_rate=target_rate,
            step_duration_s=step_duration_s,
            submit=submit,
            clock=clock,
            sleep=sleep,
        )
        logger.info(
            "Step %d: %d/%d ok (%.1f%%), avg latency %.1f ms",
            step_index,
            record.successful_count,
            record.total_count,
            record.success_rate * 100.0,
            record.average_latency_ms,
        )
        records.append(record)

    elapsed_s = clock() - test_start
    return RampTestResult(
        elapsed_s=elapsed_s,
        steps=records,
        summary=compute_summary(records, elapsed_s),
    )


def _client_limits(max_tps: int) -> httpx.Limits:
    # No pool cap: in-flight submissions are bounded only by the emission rate.
    return httpx.Limits(
        max_connections=None,
        max_keepalive_connections=max(max_tps * 2, 32),
    )


async def run_load_test(
    config: RunConfig,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> RampTestResult:
    plan = RampPlan(
        max_rate=config.max_tps,
        total_duration_s=float(config.duration_s),
        step_count=config.steps,
    )
    signer = StarkSigner.from_hex(config.private_key)
    gas_token = parse_felt(config.gas_token, "gas token")
    settings = SubmissionSettings(
        user_address=parse_felt(config.user_address, "user address"),
        gas_token=gas_token,
        call=transfer_call(token=gas_token, recipient=parse_felt(config.recipient, "recipient")),
    )

    async with PaymasterClient(
        config.endpoint,
        timeout_s=config.timeout_s,
        limits=_client_limits(config.max_tps),
        transport=transport,
    ) as client:
        if not await client.is_available():
            raise ServiceNotAvailable(f"Paymaster service not available at {config.endpoint}")

        logger.info("Starting single account stress test:")
        logger.info("  Endpoint: %s", config.endpoint)
        logger.info("  Max TPS: %d", config.max_tps)
        logger.info("  Duration for Full Test: %ss", config.duration_s)
        logger.info("  Steps: %d", config.steps)

        return await run_ramp_test(
            plan,
            submit=functools.partial(submit_transaction, client, signer, settings),
        )
