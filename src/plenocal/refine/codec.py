from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Mapping

import numpy as np


class ShapeMismatchError(ValueError):
    pass


@dataclass(frozen=True)
class ParamBlock:
    name: str
    shape: tuple[int, ...]
    start: int
    stop: int

    @property
    def size(self) -> int:
        return self.stop - self.start


@dataclass(frozen=True)
class ParamLayout:
    """
    Ordered (name, shape) descriptor of a flat parameter vector.

    Built once per refinement run; every encode/decode goes through the same
    offsets so values, sensitivity tags and bounds stay aligned.
    """

    blocks: tuple[ParamBlock, ...]

    @classmethod
    def from_shapes(cls, shapes: Iterable[tuple[str, tuple[int, ...]]]) -> ParamLayout:
        blocks: list[ParamBlock] = []
        offset = 0
        seen: set[str] = set()
        for name, shape in shapes:
            if name in seen:
                raise ValueError(f"duplicate parameter block: {name!r}")
            seen.add(name)
            shape = tuple(int(n) for n in shape)
            size = int(np.prod(shape, dtype=np.int64))
            blocks.append(ParamBlock(name=name, shape=shape, start=offset, stop=offset + size))
            offset += size
        return cls(blocks=tuple(blocks))

    @property
    def size(self) -> int:
        return self.blocks[-1].stop if self.blocks else 0

    @property
    def names(self) -> tuple[str, ...]:
        return tuple(b.name for b in self.blocks)

    def block(self, name: str) -> ParamBlock:
        for b in self.blocks:
            if b.name == name:
                return b
        raise KeyError(name)

    def flatten(self, bundle: Mapping[str, np.ndarray], dtype: type = np.float64) -> np.ndarray:
        if set(bundle.keys()) != set(self.names):
            raise ShapeMismatchError(f"bundle keys {sorted(bundle)} do not match layout {sorted(self.names)}")
        out = np.empty((self.size,), dtype=dtype)
        for b in self.blocks:
            arr = np.asarray(bundle[b.name])
            if arr.shape != b.shape:
                raise ShapeMismatchError(f"block {b.name!r}: expected shape {b.shape}, got {arr.shape}")
            out[b.start : b.stop] = arr.reshape(-1)
        return out

    def unflatten(self, vector: np.ndarray) -> dict[str, np.ndarray]:
        vector = np.asarray(vector).reshape(-1)
        if vector.size != self.size:
            raise ShapeMismatchError(f"vector has {vector.size} elements, layout expects {self.size}")
        return {b.name: vector[b.start : b.stop].reshape(b.shape).copy() for b in self.blocks}

    def flatten_bounds(self, bounds: Mapping[str, np.ndarray]) -> np.ndarray:
        """
        Flatten per-block (2, size) [lower; upper] arrays into interleaved (low, high) pairs.

        The result has 2*size elements; use `split_bounds` to recover (lower, upper).
        """
        if set(bounds.keys()) != set(self.names):
            raise ShapeMismatchError(f"bounds keys {sorted(bounds)} do not match layout {sorted(self.names)}")
        out = np.empty((2 * self.size,), dtype=np.float64)
        for b in self.blocks:
            arr = np.asarray(bounds[b.name], dtype=np.float64)
            if arr.shape != (2, b.size):
                raise ShapeMismatchError(f"bounds {b.name!r}: expected shape {(2, b.size)}, got {arr.shape}")
            out[2 * b.start : 2 * b.stop] = arr.T.reshape(-1)
        return out


def split_bounds(flat_bounds: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    pairs = np.asarray(flat_bounds, dtype=np.float64).reshape(-1, 2)
    return pairs[:, 0].copy(), pairs[:, 1].copy()


def unbounded(size: int) -> np.ndarray:
    """(2, size) bounds array of (-inf, +inf) pairs."""
    return np.array([[-np.inf], [np.inf]], dtype=np.float64) * np.ones((1, int(size)), dtype=np.float64)


def flatten(bundle: Mapping[str, np.ndarray]) -> tuple[np.ndarray, ParamLayout]:
    """Flatten named arrays, in mapping order, into one float vector plus its layout."""
    layout = ParamLayout.from_shapes((name, np.shape(arr)) for name, arr in bundle.items())
    return layout.flatten(bundle), layout


def unflatten(vector: np.ndarray, layout: ParamLayout) -> dict[str, np.ndarray]:
    return layout.unflatten(vector)
