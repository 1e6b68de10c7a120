"""Helpers for wiping sensitive bytes from memory."""

from __future__ import annotations

from typing import Optional, Union

Buffer = Union[bytearray, memoryview]


def zero_bytes(data: Optional[Buffer]) -> None:
    """Overwrite a writable buffer with zeros in place.

    Raises TypeError for read-only buffers such as bytes.
    """
    if not data:
        return
    with memoryview(data) as view, view.cast("B") as flat:
        flat[:] = bytes(flat.nbytes)


class SecureBytes:
    """Owns a private copy of sensitive bytes and wipes it when done."""

    __slots__ = ("_data",)

    def __init__(self, data: Optional[bytes] = None) -> None:
        self._data: Optional[bytearray] = bytearray(data or b"")

    @property
    def data(self) -> Optional[bytearray]:
        """The underlying buffer, or None once cleared. Handle with care."""
        return self._data

    def copy(self) -> bytearray:
        """Return an independent copy of the data."""
        return bytearray(self._data or b"")

    def clear(self) -> None:
        """Zero the data and release it; safe to call more than once."""
        if self._data is not None:
            zero_bytes(self._data)
            self._data = None

    def __len__(self) -> int:
        return len(self._data or b"")

    def __enter__(self) -> "SecureBytes":
        return self

    def __exit__(self, *exc_info) -> None:
        self.clear()

    def __del__(self) -> None:
        if getattr(self, "_data", None) is not None:
            self.clear()

    def __repr__(self) -> str:
        state = "cleared" if self._data is None else f"{len(self._data)} bytes"
        return f"SecureBytes(<{state}>)"