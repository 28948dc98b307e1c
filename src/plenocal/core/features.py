from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator

import numpy as np


@dataclass(frozen=True)
class FeatureObservations:
    """
    Checkerboard corners detected in every pose and every light-field sample.

    - `cells`: object array (n_poses, n_t, n_s); each entry is None or a (K,2) [k,l]
      / (K,4) [i,j,k,l] float array of corner positions
    - `lf_size`: light-field shape (n_j, n_i, n_l, n_k)
    """

    cells: np.ndarray
    lf_size: tuple[int, int, int, int]

    @classmethod
    def empty(cls, n_poses: int, lf_size: tuple[int, int, int, int]) -> FeatureObservations:
        lf_size = tuple(int(n) for n in lf_size)  # type: ignore[assignment]
        if len(lf_size) != 4:
            raise ValueError("lf_size must have 4 entries (n_j, n_i, n_l, n_k)")
        cells = np.empty((int(n_poses), lf_size[0], lf_size[1]), dtype=object)
        return cls(cells=cells, lf_size=lf_size)  # type: ignore[arg-type]

    @property
    def n_poses(self) -> int:
        return int(self.cells.shape[0])

    def get(self, pose: int, t: int, s: int) -> np.ndarray | None:
        return self.cells[pose, t, s]

    def count(self, pose: int, t: int, s: int) -> int:
        cell = self.cells[pose, t, s]
        return 0 if cell is None else int(np.shape(cell)[0])

    def iter_cells(self) -> Iterator[tuple[int, int, int, np.ndarray]]:
        for pose, t, s in np.ndindex(*self.cells.shape):
            cell = self.cells[pose, t, s]
            if cell is not None:
                yield pose, t, s, np.asarray(cell, dtype=np.float64)


def interior_range(n: int, border: int) -> range:
    """Sample indices kept after dropping `border` samples on each side."""
    return range(int(border), int(n) - int(border))
