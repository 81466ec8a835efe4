"""
Turn Interceptors

Explicit middleware around the per-turn pipeline. Each interceptor is
an async callable (ctx, call_next) -> result; the orchestrator composes
the list it was constructed with, outermost first. Nothing here keeps
module-level state: counters live on objects the caller owns.
"""

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional, Sequence
import logging
import time

from .errors import TutorEngineError


@dataclass
class TurnContext:
    """What enters the pipeline for one user turn."""
    session_id: str
    text: str
    transcription_confidence: Optional[float] = None
    started_at: float = field(default_factory=time.perf_counter)
    metadata: Dict[str, Any] = field(default_factory=dict)


Handler = Callable[[TurnContext], Awaitable[Any]]
Interceptor = Callable[[TurnContext, Handler], Awaitable[Any]]


def compose_interceptors(handler: Handler, interceptors: Sequence[Interceptor]) -> Handler:
    """Wrap handler so interceptors[0] runs first and sees the final result last."""
    wrapped = handler
    for interceptor in reversed(list(interceptors)):
        wrapped = _bind(interceptor, wrapped)
    return wrapped


def _bind(interceptor: Interceptor, call_next: Handler) -> Handler:
    async def run(ctx: TurnContext):
        return await interceptor(ctx, call_next)
    return run


def logging_interceptor(log: Optional[logging.Logger] = None) -> Interceptor:
    log = log or logging.getLogger("tutor_engine.turns")

    async def intercept(ctx: TurnContext, call_next: Handler):
        try:
            result = await call_next(ctx)
        except TutorEngineError as e:
            log.info(f"Turn rejected session={ctx.session_id}: {e}")
            raise
        except Exception as e:
            log.error(f"Turn failed session={ctx.session_id}: {e}")
            raise
        elapsed_ms = (time.perf_counter() - ctx.started_at) * 1000
        log.info(
            f"Turn session={ctx.session_id} agent={result.agent_reply.agent_id} "
            f"errors={len(result.analysis.errors)} grammar={result.analysis.grammar_score} "
            f"handoff={'yes' if result.handoff else 'no'} "
            f"fallback={'yes' if result.agent_reply.is_fallback else 'no'} "
            f"({elapsed_ms:.0f}ms)"
        )
        return result

    return intercept


@dataclass
class TurnStats:
    """Counters filled by timing_interceptor."""
    turns: int = 0
    failures: int = 0
    fallbacks: int = 0
    handoffs: int = 0
    total_ms: float = 0.0
    max_ms: float = 0.0

    @property
    def avg_ms(self) -> float:
        return self.total_ms / self.turns if self.turns else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "turns": self.turns,
            "failures": self.failures,
            "fallbacks": self.fallbacks,
            "handoffs": self.handoffs,
            "avg_ms": round(self.avg_ms, 1),
            "max_ms": round(self.max_ms, 1),
        }


def timing_interceptor(stats: TurnStats) -> Interceptor:
    async def intercept(ctx: TurnContext, call_next: Handler):
        start = time.perf_counter()
        try:
            result = await call_next(ctx)
        except Exception:
            stats.failures += 1
            raise
        elapsed_ms = (time.perf_counter() - start) * 1000
        stats.turns += 1
        stats.total_ms += elapsed_ms
        stats.max_ms = max(stats.max_ms, elapsed_ms)
        if result.agent_reply.is_fallback:
            stats.fallbacks += 1
        if result.handoff:
            stats.handoffs += 1
        return result

    return intercept
