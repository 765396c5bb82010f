"""Ordered probing: the first candidate that passes wins, else a default.

Container names, API endpoints and advertised addresses are all resolved the
same way. An explicit value short-circuits probing entirely; otherwise each
candidate is checked in order and any exception raised by the check is
treated as "try the next one".
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Generic, Iterable, List, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

SOURCE_ENV = "env"
SOURCE_PROBE = "probe"
SOURCE_DEFAULT = "default"


class ResolutionError(RuntimeError):
    """Raised in strict mode when no candidate passes its probe."""

    def __init__(self, label: str, attempts: Iterable[object]) -> None:
        tried = ", ".join(str(item) for item in attempts) or "none"
        super().__init__(f"Could not resolve {label}; tried: {tried}")
        self.label = label
        self.attempts = list(attempts)


@dataclass
class Resolution(Generic[T]):
    """Outcome of a resolution and how it was reached."""

    value: T
    source: str
    attempts: List[T] = field(default_factory=list)

    @property
    def is_guess(self) -> bool:
        return self.source == SOURCE_DEFAULT

    def as_dict(self) -> dict:
        return {"value": self.value, "source": self.source, "attempts": list(self.attempts)}


def first_success(
    candidates: Iterable[T],
    check: Callable[[T], object],
    *,
    default: T,
    label: str = "value",
) -> Resolution[T]:
    """Return the first candidate for which ``check`` is truthy."""

    attempts: List[T] = []
    for candidate in candidates:
        if candidate in attempts:
            continue
        attempts.append(candidate)
        try:
            ok = check(candidate)
        except Exception as exc:
            logger.debug("Probe for %s candidate %r failed: %s", label, candidate, exc)
            continue
        if ok:
            logger.debug("Resolved %s to %r via probe", label, candidate)
            return Resolution(candidate, SOURCE_PROBE, attempts)

    logger.warning("No %s candidate responded; falling back to %r", label, default)
    return Resolution(default, SOURCE_DEFAULT, attempts)


def resolve(
    explicit: T | None,
    candidates: Iterable[T],
    check: Callable[[T], object],
    *,
    default: T,
    label: str = "value",
    strict: bool = False,
) -> Resolution[T]:
    """Resolve a value: explicit wins outright, then probing, then ``default``.

    With ``strict`` set, falling through to the default raises
    :class:`ResolutionError` instead of returning a guess.
    """

    if explicit:
        logger.debug("Using explicit %s %r", label, explicit)
        return Resolution(explicit, SOURCE_ENV, [])

    resolution = first_success(candidates, check, default=default, label=label)
    if strict and resolution.is_guess:
        raise ResolutionError(label, resolution.attempts)
    return resolution
