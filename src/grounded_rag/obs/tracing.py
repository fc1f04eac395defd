"""Request correlation, timing and cost accounting."""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field

from grounded_rag.types import EstimatedCost, TokenUsage

# USD per 1M tokens.
PRICE_TABLE: dict[str, tuple[float, float]] = {
    "gpt-4o": (2.5, 10.0),
    "gpt-4o-mini": (0.15, 0.6),
    "gpt-4-turbo": (10.0, 30.0),
    "gpt-4": (30.0, 60.0),
    "gpt-3.5-turbo": (0.5, 1.5),
    "text-embedding-3-small": (0.02, 0.02),
    "text-embedding-3-large": (0.13, 0.13),
    "claude-3-opus-20240229": (15.0, 75.0),
    "claude-3-sonnet-20240229": (3.0, 15.0),
    "claude-3-haiku-20240307": (0.25, 1.25),
    "command-r": (0.5, 1.5),
    "command-r-plus": (3.0, 15.0),
    "gemini-1.5-pro": (3.5, 10.5),
    "gemini-1.5-flash": (0.35, 1.05),
}


@dataclass(slots=True)
class RequestContext:
    """Per-call correlation object threaded explicitly through the engine."""

    trace_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    agent_name: str | None = None
    session_id: str | None = None
    started_at: float = field(default_factory=time.perf_counter)

    @property
    def duration_ms(self) -> float:
        return (time.perf_counter() - self.started_at) * 1000.0

    def log_fields(self, **extra: object) -> dict[str, object]:
        return {
            "trace_id": self.trace_id,
            "agent": self.agent_name,
            "session_id": self.session_id,
            **extra,
        }


class CostTracker:
    """Estimates spend from token usage; unknown models cost nothing."""

    def __init__(self, prices: dict[str, tuple[float, float]] | None = None) -> None:
        self._prices = PRICE_TABLE if prices is None else prices

    def estimate(self, model: str, usage: TokenUsage) -> EstimatedCost:
        prompt_price, completion_price = self._prices.get(model, (0.0, 0.0))
        amount = (usage.prompt_tokens / 1_000_000) * prompt_price + (
            usage.completion_tokens / 1_000_000
        ) * completion_price
        return EstimatedCost(amount=round(amount, 6), currency="USD", model=model)

    @staticmethod
    def format(cost: EstimatedCost) -> str:
        return f"{cost.amount:.4f} {cost.currency}"


class Timer:
    """Wall-clock timer for a block, in milliseconds.

    `elapsed_ms` reads the running time inside the block and the frozen
    total after it exits.
    """

    __slots__ = ("_started", "_stopped")

    def __init__(self) -> None:
        self._started: float | None = None
        self._stopped: float | None = None

    def __enter__(self) -> Timer:
        self._started = time.perf_counter()
        self._stopped = None
        return self

    def __exit__(self, *exc_info: object) -> None:
        self._stopped = time.perf_counter()

    @property
    def elapsed_ms(self) -> float:
        if self._started is None:
            return 0.0
        end = self._stopped if self._stopped is not None else time.perf_counter()
        return (end - self._started) * 1000.0
