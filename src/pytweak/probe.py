"""Pure evaluation of probe comparisons.

Nothing here touches a store.  Callers pass what they observed and get a
boolean back, which keeps the OR and invert rules testable on their own.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable

from .catalog import Comparison, TweakProbe
from .locations import StoredValue, as_text


def value_matches(stored: StoredValue | None, trigger: str | None, invert: bool = False) -> bool:
    """Return whether *stored* equals *trigger*, optionally inverted.

    The comparison is on text and ignores case.  An absent value reads as
    the empty string, so ``trigger=""`` matches a missing value.
    """
    text = as_text(stored.data if stored is not None else None)
    result = text.casefold() == (trigger or "").casefold()
    return not result if invert else result


def presence_matches(present: bool, invert: bool = False) -> bool:
    return not present if invert else present


def any_match(results: Iterable[bool]) -> bool:
    """OR of *results*; an empty iterable is ``False``."""
    return any(results)


def evaluate(probe: TweakProbe, check: Callable[[Comparison], bool]) -> bool:
    """Evaluate *probe* by OR-ing ``check(comparison)`` over its comparisons.

    Evaluation stops at the first match.
    """
    return any_match(check(c) for c in probe.comparisons)
