from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple


@dataclass(slots=True)
class MemoryBlock:
    """
    A contiguous range of words ``[base_address, base_address + length)``.

    Blocks are mutable: the allocator shrinks a free block in place when it
    carves an allocation off its front, so anyone holding the block sees the
    update. Equality compares both fields.
    """

    base_address: int
    length: int

    @property
    def end(self) -> int:
        return self.base_address + self.length

    def overlaps(self, other: "MemoryBlock") -> bool:
        return self.base_address < other.end and other.base_address < self.end

    def adjacent_to(self, other: "MemoryBlock") -> bool:
        """True if ``other`` starts exactly where this block ends."""
        return self.end == other.base_address

    def as_tuple(self) -> Tuple[int, int]:
        return (self.base_address, self.length)

    def __str__(self) -> str:
        return f"({self.base_address} , {self.length})"
