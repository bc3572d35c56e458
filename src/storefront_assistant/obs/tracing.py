"""Turn tracing, token estimation and dashboard metrics."""

from __future__ import annotations

import math
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone

from storefront_assistant.types import ToolTrace


@dataclass(slots=True)
class TurnTrace:
    trace_id: str
    timestamp_utc: str
    tenant: str
    session_id: str
    user_message: str
    answer: str
    response_type: str
    product_ids: list[str]
    tool_traces: list[ToolTrace]
    dropped_for_relevance: int
    model_calls: int
    input_tokens: int
    output_tokens: int
    credits_used: float
    latency_ms: float
    success: bool = True
    notes: list[str] = field(default_factory=list)


class TraceStore:
    """In-memory trace storage for API-level observability."""

    def __init__(self, max_records: int = 1000) -> None:
        self._records: dict[str, TurnTrace] = {}
        self._max_records = max_records

    def create_record(
        self,
        *,
        tenant: str,
        session_id: str,
        user_message: str,
        answer: str,
        response_type: str,
        product_ids: list[str],
        tool_traces: list[ToolTrace],
        dropped_for_relevance: int,
        model_calls: int,
        input_tokens: int,
        output_tokens: int,
        credits_used: float,
        latency_ms: float,
        success: bool = True,
    ) -> TurnTrace:
        record = TurnTrace(
            trace_id=str(uuid.uuid4()),
            timestamp_utc=datetime.now(timezone.utc).isoformat(),
            tenant=tenant,
            session_id=session_id,
            user_message=user_message[:100],
            answer=answer,
            response_type=response_type,
            product_ids=product_ids,
            tool_traces=tool_traces,
            dropped_for_relevance=dropped_for_relevance,
            model_calls=model_calls,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            credits_used=credits_used,
            latency_ms=latency_ms,
            success=success,
        )
        self._records[record.trace_id] = record
        while len(self._records) > self._max_records:
            self._records.pop(next(iter(self._records)))
        return record

    def get(self, trace_id: str) -> TurnTrace:
        record = self._records.get(trace_id)
        if record is None:
            raise KeyError(f"Trace not found: {trace_id}")
        return record

    def list_recent(self, limit: int = 20) -> list[TurnTrace]:
        return list(self._records.values())[-limit:]

    def summary(self) -> dict[str, float | int]:
        """Aggregate turn metrics for dashboard display."""
        records = list(self._records.values())
        total = len(records)
        if total == 0:
            return {
                "total_requests": 0,
                "avg_latency_ms": 0.0,
                "p95_latency_ms": 0.0,
                "avg_products_found": 0.0,
                "tool_error_rate": 0.0,
                "total_input_tokens": 0,
                "total_output_tokens": 0,
                "total_credits_used": 0.0,
            }

        latencies = sorted(record.latency_ms for record in records)
        p95_index = max(0, int((len(latencies) * 0.95) - 1))
        tool_calls = [trace for record in records for trace in record.tool_traces]
        tool_errors = sum(1 for trace in tool_calls if trace.status != "ok")

        return {
            "total_requests": total,
            "avg_latency_ms": sum(latencies) / total,
            "p95_latency_ms": latencies[p95_index],
            "avg_products_found": sum(len(record.product_ids) for record in records) / total,
            "tool_error_rate": tool_errors / len(tool_calls) if tool_calls else 0.0,
            "total_input_tokens": sum(record.input_tokens for record in records),
            "total_output_tokens": sum(record.output_tokens for record in records),
            "total_credits_used": sum(record.credits_used for record in records),
        }


def estimate_token_count(text: str) -> int:
    """Rough token count: about four tokens for every three words."""
    words = len(text.split())
    return math.ceil(words / 0.75)
