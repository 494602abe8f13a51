from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict

from .memory_block import MemoryBlock

if TYPE_CHECKING:
    from .memory_space import MemorySpace


@dataclass
class CompactionReport:
    merged: int = 0
    moved_blocks: int = 0
    moved_words: int = 0
    relocations: Dict[int, int] = field(default_factory=dict)


class Compactor(ABC):
    """Defragmentation strategy. A space keeps the one it was built with."""

    name: str
    relocates: bool = False

    @abstractmethod
    def compact(self, space: "MemorySpace") -> CompactionReport:
        ...

    @staticmethod
    def merge_free_blocks(space: "MemorySpace") -> int:
        """
        Coalesce every pair of address-adjacent free blocks.

        Blocks are visited in address order, so one pass reaches the fixed
        point. The lower block survives and grows; the absorbed block leaves
        the free list. Survivors keep their registry positions.
        """
        free_list = space.free_list
        by_address = sorted(free_list.nodes(), key=lambda node: node[1].base_address)
        merged = 0
        survivor = None
        for handle, block in by_address:
            if survivor is not None and survivor.adjacent_to(block):
                survivor.length += block.length
                free_list.remove_node(handle)
                merged += 1
            else:
                survivor = block
        return merged


class CoalescingCompactor(Compactor):
    """
    Merge adjacent free blocks and nothing else. Allocated blocks never move,
    so every address returned by ``allocate`` stays valid until released.
    """

    def __init__(self) -> None:
        self.name = "coalesce"

    def compact(self, space: "MemorySpace") -> CompactionReport:
        return CompactionReport(merged=self.merge_free_blocks(space))


class RelocatingCompactor(Compactor):
    """
    Merge free blocks, then slide every allocated block towards address 0 in
    allocation order so all free space becomes one trailing block.

    Relocation changes allocated base addresses. Callers must translate any
    address they hold through ``CompactionReport.relocations`` (also kept as
    ``MemorySpace.last_relocations``).
    """

    relocates = True

    def __init__(self) -> None:
        self.name = "relocate"

    def compact(self, space: "MemorySpace") -> CompactionReport:
        report = CompactionReport(merged=self.merge_free_blocks(space))

        cursor = 0
        for block in space.allocated_list:
            if block.base_address != cursor:
                report.relocations[block.base_address] = cursor
                report.moved_blocks += 1
                report.moved_words += block.length
                block.base_address = cursor
            cursor += block.length

        free_list = space.free_list
        remaining = space.capacity - cursor
        survivor = free_list.first
        free_list.clear()
        if remaining > 0:
            if survivor is None:
                survivor = MemoryBlock(cursor, remaining)
            else:
                survivor.base_address = cursor
                survivor.length = remaining
            free_list.append(survivor)
        return report
