"""In-memory commentary store.

Keeps the latest strategy recommendation per car, the set of cars whose
recommendation is currently generating, and the race Q&A conversation.
"""

from __future__ import annotations

from pitwall.commentary import CommentaryContext

from backend.api.schemas.commentary import StrategyResponse

# Module-level in-memory caches
_strategies: dict[str, StrategyResponse] = {}
_generating: set[str] = set()  # car numbers currently generating
_chat_context: CommentaryContext | None = None


def store_strategy(car_number: str, strategy: StrategyResponse) -> None:
    _strategies[car_number] = strategy


def get_strategy(car_number: str) -> StrategyResponse | None:
    return _strategies.get(car_number)


def clear_strategy(car_number: str) -> None:
    _strategies.pop(car_number, None)


def is_generating(car_number: str) -> bool:
    """Check if a strategy recommendation is being generated for a car."""
    return car_number in _generating


def mark_generating(car_number: str) -> None:
    _generating.add(car_number)


def unmark_generating(car_number: str) -> None:
    _generating.discard(car_number)


def get_chat_context() -> CommentaryContext:
    """Return the shared race Q&A history, creating it on first use."""
    global _chat_context
    if _chat_context is None:
        _chat_context = CommentaryContext()
    return _chat_context


def clear_all_commentary() -> None:
    """Clear all in-memory commentary data. Used in tests and on race reload."""
    global _chat_context
    _strategies.clear()
    _generating.clear()
    _chat_context = None
