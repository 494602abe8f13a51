"""
Word-addressed heap simulator with a first-fit free list.

Expose the allocator, its block types, and the compaction strategies.
"""

from .memory_block import MemoryBlock
from .block_list import BlockList
from .memory_space import MemorySpace
from .compactors import CoalescingCompactor, CompactionReport, Compactor, RelocatingCompactor
from .errors import HeapError, InvalidCapacity, InvalidRequest, OutOfMemory, UnknownAddress
from .persistence import OperationJournal, SnapshotStore

__all__ = [
    "MemoryBlock",
    "BlockList",
    "MemorySpace",
    "Compactor",
    "CompactionReport",
    "CoalescingCompactor",
    "RelocatingCompactor",
    "HeapError",
    "InvalidCapacity",
    "InvalidRequest",
    "OutOfMemory",
    "UnknownAddress",
    "OperationJournal",
    "SnapshotStore",
]
