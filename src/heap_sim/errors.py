from __future__ import annotations


class HeapError(Exception):
    """Base class for every error the simulated heap reports."""


class InvalidCapacity(HeapError, ValueError):
    def __init__(self, capacity: object) -> None:
        super().__init__(f"capacity must be a positive integer, got {capacity!r}")
        self.capacity = capacity


class InvalidRequest(HeapError, ValueError):
    def __init__(self, length: object) -> None:
        super().__init__(f"allocation length must be a positive integer, got {length!r}")
        self.length = length


class OutOfMemory(HeapError, MemoryError):
    """No free block is large enough. Nothing was changed; the caller may retry."""

    def __init__(self, requested: int, available: int, largest_free: int) -> None:
        super().__init__(
            f"unable to allocate {requested} words "
            f"({available} free, largest free block {largest_free})"
        )
        self.requested = requested
        self.available = available
        self.largest_free = largest_free


class UnknownAddress(HeapError, KeyError):
    """
    The address does not start any currently allocated block.

    ``previously_released`` is True when the address was handed back earlier
    and has not been allocated again since, which usually means a double free.
    """

    def __init__(self, address: object, *, previously_released: bool = False) -> None:
        reason = "already released" if previously_released else "not allocated"
        super().__init__(f"address {address!r} is {reason}")
        self.address = address
        self.previously_released = previously_released

    def __str__(self) -> str:
        # KeyError would otherwise repr() the message.
        return str(self.args[0])
