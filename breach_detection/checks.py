from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Dict, Generic, List, Tuple, TypeVar

T = TypeVar("T")


@dataclass(slots=True)
class CheckOutcome(Generic[T]):
    """Items produced by a batch of independent checks plus the names of checks that errored."""

    items: List[T] = field(default_factory=list)
    failed_checks: List[str] = field(default_factory=list)


def run_checks(
    checks: Dict[str, Callable[[], T]],
    max_workers: int,
    log: logging.Logger,
) -> Tuple[Dict[str, T], List[str]]:
    """Run independent callables in a thread pool, isolating failures per check."""
    results: Dict[str, T] = {}
    failed: List[str] = []
    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        futures = {name: executor.submit(check) for name, check in checks.items()}
        for name, future in futures.items():
            try:
                results[name] = future.result()
            except Exception:
                log.warning("Security check %s failed; continuing without it", name, exc_info=True)
                failed.append(name)
    return results, failed
