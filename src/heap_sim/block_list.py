from __future__ import annotations

from typing import Iterator, List, Optional, Tuple

from .memory_block import MemoryBlock

_NIL = -1


class BlockList:
    """
    Ordered sequence of memory blocks backed by a slot arena.

    Each stored block lives in a slot; slots are linked by index in both
    directions. A slot index is the node handle returned by ``append`` and
    friends, and it stays valid until that node is removed, no matter what
    else is inserted or removed. Released slots are recycled through a
    free-slot stack.
    """

    def __init__(self) -> None:
        self._blocks: List[Optional[MemoryBlock]] = []
        self._next: List[int] = []
        self._prev: List[int] = []
        self._spare: List[int] = []
        self._head = _NIL
        self._tail = _NIL
        self._size = 0

    def __len__(self) -> int:
        return self._size

    def __bool__(self) -> bool:
        return self._size > 0

    def __iter__(self) -> Iterator[MemoryBlock]:
        for _, block in self.nodes():
            yield block

    def __str__(self) -> str:
        return " ".join(str(block) for block in self)

    # -- Insertion -----------------------------------------------------------------
    def append(self, block: MemoryBlock) -> int:
        """Add ``block`` at the end of the list and return its handle."""
        handle = self._acquire_slot(block)
        self._link_after(self._tail, handle)
        return handle

    def append_left(self, block: MemoryBlock) -> int:
        """Add ``block`` at the front of the list and return its handle."""
        handle = self._acquire_slot(block)
        self._link_after(_NIL, handle)
        return handle

    def insert(self, index: int, block: MemoryBlock) -> int:
        """Insert ``block`` before position ``index`` (0 <= index <= len)."""
        if index < 0 or index > self._size:
            raise IndexError(f"index {index} out of range for list of size {self._size}")
        if index == self._size:
            return self.append(block)
        if index == 0:
            return self.append_left(block)
        predecessor = self._handle_at(index - 1)
        handle = self._acquire_slot(block)
        self._link_after(predecessor, handle)
        return handle

    # -- Access --------------------------------------------------------------------
    def get(self, index: int) -> MemoryBlock:
        if index < 0 or index >= self._size:
            raise IndexError(f"index {index} out of range for list of size {self._size}")
        return self.block(self._handle_at(index))

    def block(self, handle: int) -> MemoryBlock:
        """Return the block stored under ``handle``."""
        self._check_handle(handle)
        return self._blocks[handle]

    @property
    def first(self) -> Optional[MemoryBlock]:
        return self._blocks[self._head] if self._head != _NIL else None

    @property
    def last(self) -> Optional[MemoryBlock]:
        return self._blocks[self._tail] if self._tail != _NIL else None

    def index_of(self, block: MemoryBlock) -> int:
        """Position of the first block equal to ``block``, or -1."""
        for index, candidate in enumerate(self):
            if candidate == block:
                return index
        return -1

    def find(self, base_address: int) -> Optional[Tuple[int, MemoryBlock]]:
        """Return ``(handle, block)`` for the first block starting at ``base_address``."""
        for handle, block in self.nodes():
            if block.base_address == base_address:
                return handle, block
        return None

    def nodes(self) -> Iterator[Tuple[int, MemoryBlock]]:
        """
        Forward traversal yielding ``(handle, block)`` pairs.

        The caller may remove the node it was just handed, or any other node,
        between steps. If the current node is still linked the walk follows
        its live successor; otherwise it resumes from the successor read
        before yielding, which must not have been removed as well.
        """
        current = self._head
        while current != _NIL:
            successor = self._next[current]
            block = self._blocks[current]
            yield current, block
            if self._blocks[current] is block:
                successor = self._next[current]
            current = successor

    # -- Removal -------------------------------------------------------------------
    def remove_node(self, handle: int) -> MemoryBlock:
        """Unlink the node ``handle`` and return its block."""
        self._check_handle(handle)
        block = self._blocks[handle]
        before, after = self._prev[handle], self._next[handle]
        if before == _NIL:
            self._head = after
        else:
            self._next[before] = after
        if after == _NIL:
            self._tail = before
        else:
            self._prev[after] = before
        self._blocks[handle] = None
        self._next[handle] = self._prev[handle] = _NIL
        self._spare.append(handle)
        self._size -= 1
        return block

    def remove_at(self, index: int) -> MemoryBlock:
        if index < 0 or index >= self._size:
            raise IndexError(f"index {index} out of range for list of size {self._size}")
        return self.remove_node(self._handle_at(index))

    def remove(self, block: MemoryBlock) -> None:
        """Remove the first block equal to ``block``; ValueError if absent."""
        for handle, candidate in self.nodes():
            if candidate == block:
                self.remove_node(handle)
                return
        raise ValueError(f"{block} is not in the list")

    def clear(self) -> None:
        self._blocks.clear()
        self._next.clear()
        self._prev.clear()
        self._spare.clear()
        self._head = self._tail = _NIL
        self._size = 0

    # -- Internals -----------------------------------------------------------------
    def _acquire_slot(self, block: MemoryBlock) -> int:
        if self._spare:
            handle = self._spare.pop()
            self._blocks[handle] = block
            return handle
        self._blocks.append(block)
        self._next.append(_NIL)
        self._prev.append(_NIL)
        return len(self._blocks) - 1

    def _link_after(self, predecessor: int, handle: int) -> None:
        # predecessor == _NIL links at the head.
        successor = self._head if predecessor == _NIL else self._next[predecessor]
        self._prev[handle] = predecessor
        self._next[handle] = successor
        if predecessor == _NIL:
            self._head = handle
        else:
            self._next[predecessor] = handle
        if successor == _NIL:
            self._tail = handle
        else:
            self._prev[successor] = handle
        self._size += 1

    def _handle_at(self, index: int) -> int:
        current = self._head
        for _ in range(index):
            current = self._next[current]
        return current

    def _check_handle(self, handle: int) -> None:
        if handle < 0 or handle >= len(self._blocks) or self._blocks[handle] is None:
            raise KeyError(f"stale or unknown node handle {handle}")
