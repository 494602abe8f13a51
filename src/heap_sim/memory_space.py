from __future__ import annotations

from contextlib import contextmanager, nullcontext
from typing import TYPE_CHECKING, Any, Dict, Iterable, Iterator, List, Mapping, Optional, Set, Tuple

from .block_list import BlockList
from .compactors import CompactionReport, Compactor, RelocatingCompactor
from .errors import InvalidCapacity, InvalidRequest, OutOfMemory, UnknownAddress
from .locks import ReadWriteLock
from .memory_block import MemoryBlock
from .persistence import OperationJournal, validate_entry

if TYPE_CHECKING:
    from experiments.instrumentation import AllocatorProfiler


def _is_word_count(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


class MemorySpace:
    """
    Simulated word-addressed heap with a first-fit free list.

    Two registries hold the state. The free list starts as one block covering
    ``[0, capacity)`` and is kept in insertion order, not address order:
    first-fit scans it front to back, so space released earliest is reused
    first. The allocated list is kept in allocation order.

    ``release`` appends the block to the free list unchanged and never merges
    neighbours. Only ``compact`` reorganises free space, using the compactor
    the space was built with. With the default ``RelocatingCompactor`` a
    compaction moves allocated blocks, so an address returned by ``allocate``
    is valid only until the next ``compact`` call.
    """

    def __init__(
        self,
        capacity: int,
        *,
        compactor: Optional[Compactor] = None,
        profiler: Optional["AllocatorProfiler"] = None,
        thread_safe: bool = False,
        journal: Optional[OperationJournal] = None,
    ) -> None:
        if not _is_word_count(capacity) or capacity <= 0:
            raise InvalidCapacity(capacity)
        self.capacity = capacity
        self.compactor = compactor or RelocatingCompactor()
        self.profiler = profiler
        self._lock = ReadWriteLock() if thread_safe else None
        self._journal = journal

        self._free = BlockList()
        self._free.append(MemoryBlock(0, capacity))
        self._allocated = BlockList()
        self._released: Set[int] = set()
        self.last_compaction: Optional[CompactionReport] = None

    # -- Registries ----------------------------------------------------------------
    @property
    def free_list(self) -> BlockList:
        return self._free

    @property
    def allocated_list(self) -> BlockList:
        return self._allocated

    # -- Allocation ----------------------------------------------------------------
    def allocate(self, length: int) -> int:
        """
        Reserve ``length`` words with first-fit and return the base address.

        The first free block large enough wins. An exact fit leaves the free
        list; otherwise the free block is shrunk in place from the front.
        Raises ``InvalidRequest`` for a non-positive length and
        ``OutOfMemory`` when no free block fits. Neither changes any state.
        """
        if not _is_word_count(length) or length <= 0:
            raise InvalidRequest(length)
        with self._guard(write=True):
            return self._allocate(length)

    def try_allocate(self, length: int) -> Optional[int]:
        """Like ``allocate`` but return None when the heap cannot fit the request."""
        try:
            return self.allocate(length)
        except OutOfMemory:
            return None

    def _allocate(self, length: int) -> int:
        for handle, free_block in self._free.nodes():
            if free_block.length < length:
                continue
            block = MemoryBlock(free_block.base_address, length)
            self._allocated.append(block)
            if free_block.length == length:
                self._free.remove_node(handle)
            else:
                free_block.base_address += length
                free_block.length -= length
            if self._released:
                # A coalesced block can hand out a released address from a lower start.
                self._released = {
                    address for address in self._released
                    if not block.base_address <= address < block.end
                }
            self._record("allocate", {"address": block.base_address, "length": length})
            if self._journal:
                self._journal.append({"op": "allocate", "length": length, "address": block.base_address})
            return block.base_address

        error = OutOfMemory(length, self._free_words(), self._largest_free())
        self._record("allocate_failed", {"length": length, "largest_free": error.largest_free})
        raise error

    # -- Release -------------------------------------------------------------------
    def release(self, address: int) -> None:
        """
        Return the block starting at ``address`` to the end of the free list.

        Raises ``UnknownAddress`` when no allocated block starts there,
        including a second release of the same address.
        """
        with self._guard(write=True):
            found = self._allocated.find(address)
            if found is None:
                error = UnknownAddress(address, previously_released=address in self._released)
                self._record(
                    "release_failed",
                    {"address": address, "previously_released": error.previously_released},
                )
                raise error
            handle, block = found
            self._allocated.remove_node(handle)
            self._free.append(block)
            self._released.add(address)
            self._record("release", {"address": address, "length": block.length})
            if self._journal:
                self._journal.append({"op": "release", "address": address})

    # -- Compaction ----------------------------------------------------------------
    def compact(self) -> None:
        """
        Defragment with the configured compactor. Never fails.

        After a relocating compaction ``last_relocations`` maps each moved
        block's old base address to its new one.
        """
        with self._guard(write=True):
            report = self.compactor.compact(self)
            self.last_compaction = report
            if self.compactor.relocates:
                self._released.clear()
            self._record_compaction(report)
            if self._journal:
                self._journal.append({"op": "compact"})

    @property
    def last_relocations(self) -> Dict[int, int]:
        """Old base -> new base for blocks moved by the most recent compaction."""
        if self.last_compaction is None:
            return {}
        return dict(self.last_compaction.relocations)

    def _record_compaction(self, report: CompactionReport) -> None:
        self._record(
            "compact",
            {
                "strategy": self.compactor.name,
                "merged": report.merged,
                "moved_blocks": report.moved_blocks,
                "moved_words": report.moved_words,
            },
        )

    # -- Introspection -------------------------------------------------------------
    def available(self) -> int:
        with self._guard():
            return self._free_words()

    def allocated(self) -> int:
        with self._guard():
            return self._used_words()

    def largest_free(self) -> int:
        with self._guard():
            return self._largest_free()

    def fragmentation(self) -> float:
        """External fragmentation: 1 - largest free block / total free words."""
        with self._guard():
            return self._fragmentation()

    def is_allocated(self, address: int) -> bool:
        return self.block_at(address) is not None

    def block_at(self, address: int) -> Optional[MemoryBlock]:
        """Copy of the allocated block starting at ``address``, if any."""
        with self._guard():
            found = self._allocated.find(address)
        if found is None:
            return None
        block = found[1]
        return MemoryBlock(block.base_address, block.length)

    def free_blocks(self) -> List[MemoryBlock]:
        """Copies of the free list, in registry order."""
        with self._guard():
            return [MemoryBlock(b.base_address, b.length) for b in self._free]

    def allocated_blocks(self) -> List[MemoryBlock]:
        with self._guard():
            return [MemoryBlock(b.base_address, b.length) for b in self._allocated]

    def stats(self) -> Dict[str, Any]:
        with self._guard():
            stats: Dict[str, Any] = {
                "heap_capacity": self.capacity,
                "heap_used": self._used_words(),
                "heap_free": self._free_words(),
                "largest_free": self._largest_free(),
                "fragmentation": self._fragmentation(),
                "free_blocks": len(self._free),
                "allocated_blocks": len(self._allocated),
                "compactor": self.compactor.name,
            }
        if self._lock:
            stats["thread_safe"] = 1.0
        if self._journal:
            stats["journal_enabled"] = 1.0
        return stats

    def snapshot(self) -> Dict[str, List[Tuple[int, int]]]:
        """Registry contents as ``(base, length)`` pairs, for diagnostics."""
        with self._guard():
            return {
                "free": [block.as_tuple() for block in self._free],
                "allocated": [block.as_tuple() for block in self._allocated],
            }

    def __str__(self) -> str:
        with self._guard():
            return f"{self._free}\n{self._allocated}"

    def check_invariants(self) -> None:
        """Raise AssertionError describing the first broken heap invariant."""
        with self._guard():
            free = list(self._free)
            allocated = list(self._allocated)
        for block in free + allocated:
            if block.length <= 0:
                raise AssertionError(f"non-positive block length: {block}")
            if block.base_address < 0 or block.end > self.capacity:
                raise AssertionError(f"block {block} outside [0, {self.capacity})")
        bases = [block.base_address for block in free]
        if len(bases) != len(set(bases)):
            raise AssertionError(f"duplicate free base addresses: {sorted(bases)}")
        ordered = sorted(free + allocated, key=lambda block: block.base_address)
        for lower, upper in zip(ordered, ordered[1:]):
            if lower.overlaps(upper):
                raise AssertionError(f"blocks {lower} and {upper} overlap")

    def _free_words(self) -> int:
        return sum(block.length for block in self._free)

    def _used_words(self) -> int:
        return sum(block.length for block in self._allocated)

    def _largest_free(self) -> int:
        return max((block.length for block in self._free), default=0)

    def _fragmentation(self) -> float:
        available = self._free_words()
        if available == 0:
            return 0.0
        return 1.0 - (self._largest_free() / available)

    @contextmanager
    def _guard(self, write: bool = False) -> Iterator[None]:
        if self._lock is None:
            context = nullcontext()
        elif write:
            context = self._lock.write_lock()
        else:
            context = self._lock.read_lock()
        with context:
            yield

    def _record(self, event_type: str, payload: Dict[str, object]) -> None:
        if not self.profiler:
            return
        self.profiler.record_event(
            event_type,
            {**payload, "heap_used": self._used_words(), "heap_free": self._free_words()},
        )

    # -- Reconstruction ------------------------------------------------------------
    @classmethod
    def replay(cls, capacity: int, entries: Iterable[Mapping[str, Any]], **kwargs: Any) -> "MemorySpace":
        """
        Rebuild a space by re-running journal entries against a fresh heap.

        A ``journal`` keyword is attached only after the entries are applied,
        so recovering from a log into the same log does not write it twice.
        """
        journal = kwargs.pop("journal", None)
        space = cls(capacity, **kwargs)
        for entry in entries:
            entry = validate_entry(entry)
            op = entry["op"]
            if op == "allocate":
                address = space.allocate(entry["length"])
                if address != entry["address"]:
                    raise ValueError(
                        f"replayed allocation of {entry['length']} words landed at {address}, "
                        f"journal recorded {entry['address']}"
                    )
            elif op == "release":
                space.release(entry["address"])
            else:
                space.compact()
        space._journal = journal
        return space

    @classmethod
    def from_snapshot(cls, state: Mapping[str, Any], **kwargs: Any) -> "MemorySpace":
        """Restore a space from ``SnapshotStore`` data, keeping registry order."""
        space = cls(state["capacity"], **kwargs)
        space._free.clear()
        for base, length in state["free"]:
            space._free.append(MemoryBlock(base, length))
        for base, length in state["allocated"]:
            space._allocated.append(MemoryBlock(base, length))
        try:
            space.check_invariants()
        except AssertionError as exc:
            raise ValueError(f"inconsistent heap snapshot: {exc}") from exc
        return space
