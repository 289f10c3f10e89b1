from __future__ import annotations

import json
import math
import statistics
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Optional, Sequence

from loadgen import ErrorKind, Outcome


SUSTAINABLE_SUCCESS_RATE = 0.95


@dataclass(frozen=True)
class StepRecord:
    target_rate: int
    successful_count: int
    failed_count: int
    total_count: int
    success_rate: float
    average_latency_ms: float
    error_breakdown: dict[ErrorKind, int]


@dataclass(frozen=True)
class OverallSummary:
    total_duration_elapsed_s: float
    max_sustainable_rate: int
    total_successful_transactions: int
    overall_success_rate: float


def _fmt(value: Optional[float], digits: int = 2) -> str:
    if value is None or math.isnan(value):
        return "-"
    return f"{value:.{digits}f}"


def compute_step_record(target_rate: int, outcomes: Iterable[Outcome]) -> StepRecord:
    latencies: list[float] = []
    breakdown = {kind: 0 for kind in ErrorKind}
    failed = 0
    for outcome in outcomes:
        if outcome.ok:
            latencies.append(float(outcome.latency_ms or 0.0))
        else:
            failed += 1
            breakdown[outcome.error_kind] += 1

    successful = len(latencies)
    total = successful + failed
    return StepRecord(
        target_rate=target_rate,
        successful_count=successful,
        failed_count=failed,
        total_count=total,
        success_rate=float(successful / total) if total else 0.0,
        average_latency_ms=float(statistics.fmean(latencies)) if latencies else 0.0,
        error_breakdown=breakdown,
    )


def compute_summary(records: Sequence[StepRecord], elapsed_s: float) -> OverallSummary:
    sustainable = [
        record.target_rate
        for record in records
        if record.success_rate > SUSTAINABLE_SUCCESS_RATE
    ]
    # Each step counts once regardless of how many transactions it issued.
    overall_success_rate = (
        float(statistics.fmean(record.success_rate for record in records)) if records else 0.0
    )
    return OverallSummary(
        total_duration_elapsed_s=elapsed_s,
        max_sustainable_rate=max(sustainable, default=0),
        total_successful_transactions=sum(record.successful_count for record in records),
        overall_success_rate=overall_success_rate,
    )


def step_record_to_dict(record: StepRecord) -> dict[str, Any]:
    return {
        "metrics": {
            "successful_txs": record.successful_count,
            "failed_txs": record.failed_count,
            "total_txs": record.total_count,
            "target_tps": record.target_rate,
            "success_rate": record.success_rate,
            "avg_latency_ms": record.average_latency_ms,
        },
        "error_breakdown": {
            kind.value: record.error_breakdown.get(kind, 0) for kind in ErrorKind
        },
    }


def results_to_dict(
    records: Sequence[StepRecord],
    summary: OverallSummary,
) -> dict[str, Any]:
    return {
        "total_duration_secs": int(summary.total_duration_elapsed_s),
        "results": [step_record_to_dict(record) for record in records],
        "summary": {
            "max_sustainable_tps": summary.max_sustainable_rate,
            "total_transactions": summary.total_successful_transactions,
            "overall_success_rate": summary.overall_success_rate,
        },
    }


def results_to_json(records: Sequence[StepRecord], summary: OverallSummary) -> str:
    return json.dumps(results_to_dict(records, summary), indent=2)


def write_results_json(
    output_path: Path,
    records: Sequence[StepRecord],
    summary: OverallSummary,
) -> None:
    output_path.write_text(results_to_json(records, summary) + "\n", encoding="utf-8")


def write_summary_markdown(
    output_path: Path,
    endpoint: str,
    records: Sequence[StepRecord],
    summary: OverallSummary,
) -> None:
    generated_at = datetime.now(timezone.utc).isoformat()
    lines: list[str] = []
    lines.append(f"# Paymaster Stress Test Summary - {endpoint}")
    lines.append("")
    lines.append(f"Generated at (UTC): `{generated_at}`")
    lines.append("")
    lines.append("## Step Results")
    lines.append("")
    lines.append(
        "| Target TPS | Total | OK | Failed | Success % | Avg latency ms | "
        "Nonce | Timeout | Relayer | JSON-RPC | Other |"
    )
    lines.append("|---:|---:|---:|---:|---:|---:|---:|---:|---:|---:|---:|")

    for record in records:
        errors = record.error_breakdown
        lines.append(
            "| "
            f"{record.target_rate} | "
            f"{record.total_count} | "
            f"{record.successful_count} | "
            f"{record.failed_count} | "
            f"{_fmt(record.success_rate * 100.0)} | "
            f"{_fmt(record.average_latency_ms)} | "
            f"{errors.get(ErrorKind.NONCE_CONFLICT, 0)} | "
            f"{errors.get(ErrorKind.TIMEOUT, 0)} | "
            f"{errors.get(ErrorKind.SERVICE_UNAVAILABLE, 0)} | "
            f"{errors.get(ErrorKind.PROTOCOL_ERROR, 0)} | "
            f"{errors.get(ErrorKind.OTHER, 0)} |"
        )

    lines.append("")
    lines.append("## Summary")
    lines.append("")
    lines.append(f"- Elapsed: {_fmt(summary.total_duration_elapsed_s)} s")
    lines.append(f"- Max sustainable TPS (> 95% success): {summary.max_sustainable_rate}")
    lines.append(f"- Successful transactions: {summary.total_successful_transactions}")
    lines.append(f"- Mean step success rate: {_fmt(summary.overall_success_rate * 100.0)}%")

    output_path.write_text("\n".join(lines) + "\n", encoding="utf-8")
