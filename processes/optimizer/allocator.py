"""Thread split and host allocation for weaken/grow waves.

Grow fills the biggest hosts first so large contiguous blocks stay usable for
the next grow wave; weaken walks the same order backwards and mops up the
small leftovers.
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

from .types import Host

# weaken : grow = 1 : 9
WEAKEN_SHARE_DIVISOR = 10


@dataclass(frozen=True)
class ThreadSplit:
    weaken: int
    grow: int

    @property
    def total(self) -> int:
        return self.weaken + self.grow


@dataclass
class Allocation:
    requested: int
    assignments: list[tuple[str, int]] = field(default_factory=list)
    residual: int = 0

    @property
    def assigned(self) -> int:
        return sum(t for _, t in self.assignments)


def split_threads(total_slots: int) -> ThreadSplit:
    if total_slots <= 0:
        return ThreadSplit(weaken=0, grow=0)
    weaken = int(math.ceil(total_slots / WEAKEN_SHARE_DIVISOR))
    return ThreadSplit(weaken=weaken, grow=total_slots - weaken)


def order_hosts(hosts: Iterable[Host]) -> list[Host]:
    """Hosts by descending free slots, ties broken by hostname."""
    return sorted(hosts, key=lambda h: (-h.free_slots, h.hostname))


def allocate(required: int, slots: Sequence[tuple[str, int]]) -> Allocation:
    """Assign ``required`` threads to hosts in the given order.

    A host never receives more than its slot count and hosts offering no
    slots are skipped. Whatever cannot be placed is returned as ``residual``.
    """
    alloc = Allocation(requested=max(0, required))
    remaining = alloc.requested
    for hostname, free in slots:
        if remaining <= 0:
            break
        if free <= 0:
            continue
        threads = min(remaining, free)
        alloc.assignments.append((hostname, threads))
        remaining -= threads
    alloc.residual = remaining
    return alloc


class CapacityLedger:
    """Per-iteration view of free slots, ordered by descending capacity.

    Only the scheduler's bookkeeping is updated here; host state itself is
    owned by the environment.
    """

    def __init__(self, hosts: Iterable[Host]) -> None:
        ordered = order_hosts(hosts)
        self._order = [h.hostname for h in ordered]
        self._free = {h.hostname: h.free_slots for h in ordered}

    def __len__(self) -> int:
        return len(self._order)

    @property
    def total(self) -> int:
        return sum(self._free.values())

    def free(self, hostname: str) -> int:
        return self._free.get(hostname, 0)

    def slots(self, reverse: bool = False) -> list[tuple[str, int]]:
        order = reversed(self._order) if reverse else iter(self._order)
        return [(name, self._free[name]) for name in order]

    def consume(self, hostname: str, threads: int) -> None:
        if hostname in self._free:
            self._free[hostname] = max(0, self._free[hostname] - threads)


def allocate_grow(required: int, ledger: CapacityLedger) -> Allocation:
    return allocate(required, ledger.slots())


def allocate_weaken(required: int, ledger: CapacityLedger) -> Allocation:
    return allocate(required, ledger.slots(reverse=True))


def plan_waves(ledger: CapacityLedger) -> tuple[ThreadSplit, Allocation, Allocation]:
    """Split the ledger's free slots and place both waves, grow first.

    Both placements are consumed from ``ledger``, which is left holding only
    the slots neither wave was given.
    """
    split = split_threads(ledger.total)
    grow = allocate_grow(split.grow, ledger)
    for hostname, threads in grow.assignments:
        ledger.consume(hostname, threads)
    weaken = allocate_weaken(split.weaken, ledger)
    for hostname, threads in weaken.assignments:
        ledger.consume(hostname, threads)
    return split, grow, weaken
