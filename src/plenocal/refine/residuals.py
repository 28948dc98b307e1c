from __future__ import annotations

from dataclasses import dataclass

import numpy as np
from scipy.sparse import csc_matrix, csr_matrix, lil_matrix  # type: ignore

from plenocal.core.features import FeatureObservations, interior_range
from plenocal.core.geometry import pose_to_transform, transform_points
from plenocal.core.rays import homogeneous_sample_indices
from plenocal.refine.observation_error import PerObservationErrorStrategy
from plenocal.refine.parameters import GLOBAL_TAG, ParameterEncoding


class NoValidObservationsError(RuntimeError):
    pass


class ObservationCountMismatchError(RuntimeError):
    def __init__(self, expected: int, observed: int) -> None:
        super().__init__(
            f"Mismatch between expected ({expected}) and observed ({observed}) number of feature "
            "observations -- possibly caused by a grid parameter mismatch"
        )
        self.expected = int(expected)
        self.observed = int(observed)


@dataclass(frozen=True)
class ResidualAssembler:
    """
    Point-to-ray residuals for every complete checkerboard observation.

    Residuals are ordered by (pose, t, s, corner). Cells whose corner count differs
    from `expected_corners` are skipped; after assembly the emitted count is checked
    against the total number of observations in the interior range.
    """

    features: FeatureObservations
    cal_target: np.ndarray  # (M,3) target frame
    encoding: ParameterEncoding
    observation_error: PerObservationErrorStrategy
    expected_corners: int
    t_range: range
    s_range: range

    @classmethod
    def build(
        cls,
        *,
        features: FeatureObservations,
        cal_target: np.ndarray,
        encoding: ParameterEncoding,
        observation_error: PerObservationErrorStrategy,
        expected_checker_size: tuple[int, int],
        border: int,
    ) -> ResidualAssembler:
        cal_target = np.asarray(cal_target, dtype=np.float64).reshape(-1, 3)
        expected_corners = int(np.prod(expected_checker_size))
        if cal_target.shape[0] != expected_corners:
            raise ValueError(
                f"calibration target has {cal_target.shape[0]} points, expected {expected_corners} corners"
            )
        n_j, n_i = features.lf_size[0], features.lf_size[1]
        return cls(
            features=features,
            cal_target=cal_target,
            encoding=encoding,
            observation_error=observation_error,
            expected_corners=expected_corners,
            t_range=interior_range(n_j, border),
            s_range=interior_range(n_i, border),
        )

    def total_observations(self) -> int:
        return sum(
            self.features.count(pose, t, s)
            for pose in range(self.features.n_poses)
            for t in self.t_range
            for s in self.s_range
        )

    def __call__(self, params: np.ndarray) -> np.ndarray:
        residuals, _ = self.evaluate(params, with_sparsity=False)
        return residuals

    def evaluate(self, params: np.ndarray, *, with_sparsity: bool = True) -> tuple[np.ndarray, csr_matrix | None]:
        """
        Residuals at `params`, plus the Jacobian sparsity pattern when requested.

        Row r of the pattern is True for the shared intrinsics/distortion columns and
        for the columns of the pose that produced residual r.
        """
        offsets, sparsity = self._assemble(params, with_sparsity=with_sparsity)
        return np.linalg.norm(offsets, axis=-1), sparsity

    def _assemble(
        self, params: np.ndarray, *, with_sparsity: bool
    ) -> tuple[np.ndarray, csr_matrix | None]:
        # (R,3) error vectors and the optional (R,P) pattern
        poses, camera = self.encoding.decode(params)
        n_poses = poses.shape[0]
        if n_poses != self.features.n_poses:
            raise ValueError(f"{n_poses} poses but observations for {self.features.n_poses}")

        total = self.total_observations()
        offsets = np.zeros((total, 3), dtype=np.float64)
        sparsity = lil_matrix((total, self.encoding.layout.size), dtype=bool) if with_sparsity else None
        tags = self.encoding.sensitivity

        out = 0
        for pose in range(n_poses):
            T = pose_to_transform(poses[pose])
            target_cam = transform_points(T, self.cal_target)
            cols = np.flatnonzero((tags == pose + 1) | (tags == GLOBAL_TAG))

            for t in self.t_range:
                for s in self.s_range:
                    n_obs = self.features.count(pose, t, s)
                    if n_obs != self.expected_corners:
                        continue  # incomplete detections are left out of the fit
                    obs_idx = homogeneous_sample_indices(self.features.get(pose, t, s), s, t)
                    offsets[out : out + n_obs] = self.observation_error.offsets(obs_idx, camera, target_cam)
                    if sparsity is not None:
                        sparsity[out : out + n_obs, cols] = True
                    out += n_obs

        if out == 0:
            # Nothing assembled; the caller decides this is fatal.
            empty = csr_matrix((0, self.encoding.layout.size), dtype=bool) if with_sparsity else None
            return np.zeros((0, 3), dtype=np.float64), empty
        if out != total:
            raise ObservationCountMismatchError(total, out)
        return offsets, (csr_matrix(sparsity) if sparsity is not None else None)

    def column_groups(self) -> list[np.ndarray]:
        """
        Columns that can be perturbed together in one finite-difference evaluation.

        Shared columns touch every row and stand alone; the k-th column of every pose
        is grouped since different poses never share a residual.
        """
        tags = self.encoding.sensitivity
        groups = [np.array([c], dtype=np.intp) for c in np.flatnonzero(tags == GLOBAL_TAG)]
        pose_cols = [np.flatnonzero(tags == pose + 1) for pose in range(self.features.n_poses)]
        n_local = max((c.size for c in pose_cols), default=0)
        for k in range(n_local):
            groups.append(np.array([c[k] for c in pose_cols if k < c.size], dtype=np.intp))
        return groups

    def jacobian(self, params: np.ndarray, steps: np.ndarray, sparsity: csr_matrix) -> csr_matrix:
        """
        Forward-difference Jacobian of the residuals, restricted to `sparsity`.

        Differences are taken on the error vectors and projected on their current
        direction: d|e| = (e/|e|) . de. Differencing |e| itself breaks down once
        distances shrink to the size of the step.
        """
        params = np.asarray(params, dtype=np.float64).reshape(-1)
        steps = np.asarray(steps, dtype=np.float64).reshape(-1)
        n_params = self.encoding.layout.size
        if params.size != n_params or steps.size != n_params:
            raise ValueError(f"expected {n_params} params and steps, got {params.size} and {steps.size}")

        base, _ = self._assemble(params, with_sparsity=False)
        n_rows = base.shape[0]
        pattern = csc_matrix(sparsity, dtype=bool)
        if pattern.shape != (n_rows, n_params):
            raise ValueError(f"sparsity must be {(n_rows, n_params)}, got {pattern.shape}")

        dist = np.linalg.norm(base, axis=-1, keepdims=True)
        unit = np.divide(base, dist, out=np.zeros_like(base), where=dist > 0)

        rows_out: list[np.ndarray] = []
        cols_out: list[np.ndarray] = []
        vals_out: list[np.ndarray] = []
        for group in self.column_groups():
            x = params.copy()
            x[group] += steps[group]
            moved, _ = self._assemble(x, with_sparsity=False)
            delta = np.sum(unit * (moved - base), axis=-1)
            for c in group:
                rows = pattern.indices[pattern.indptr[c] : pattern.indptr[c + 1]]
                rows_out.append(rows)
                cols_out.append(np.full(rows.size, c, dtype=np.intp))
                vals_out.append(delta[rows] / steps[c])

        if not rows_out:
            return csr_matrix((n_rows, n_params), dtype=np.float64)
        return csr_matrix(
            (np.concatenate(vals_out), (np.concatenate(rows_out), np.concatenate(cols_out))),
            shape=(n_rows, n_params),
        )
