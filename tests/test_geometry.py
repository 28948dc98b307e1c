import numpy as np

from plenocal.core.geometry import (
    checkerboard_points,
    point_ray_distance,
    point_ray_offsets,
    pose_to_transform,
    rotvec_to_matrix,
    transform_points,
)


def test_point_on_ray_has_zero_distance():
    origins = np.array([[0.0, 0.0, 0.0], [1.0, 2.0, 0.0]])
    directions = np.array([[0.0, 0.0, 1.0], [0.0, 0.0, 2.0]])
    points = np.array([[0.0, 0.0, 2.0], [1.0, 2.0, -3.0]])
    dist = point_ray_distance(origins, directions, points)
    assert dist.shape == (2,)
    assert np.all(dist == 0.0)


def test_point_ray_distance_known_value():
    dist = point_ray_distance(
        np.array([[0.0, 0.0, 0.0]]),
        np.array([[1.0, 0.0, 1.0]]),
        np.array([[0.0, 0.0, 2.0]]),
    )
    assert abs(dist[0] - np.sqrt(2.0)) < 1e-12


def test_point_ray_distance_nonnegative():
    rng = np.random.default_rng(0)
    o = rng.normal(size=(500, 3))
    d = rng.normal(size=(500, 3))
    p = rng.normal(size=(500, 3))
    dist = point_ray_distance(o, d, p)
    assert np.all(dist >= 0.0)
    # Distance never exceeds the distance to the ray origin.
    assert np.all(dist <= np.linalg.norm(p - o, axis=-1) + 1e-12)


def test_rotvec_quarter_turn_about_z():
    R = rotvec_to_matrix(np.array([0.0, 0.0, np.pi / 2]))
    np.testing.assert_allclose(R @ np.array([1.0, 0.0, 0.0]), [0.0, 1.0, 0.0], atol=1e-12)


def test_pose_transform_rotates_then_translates():
    pose = np.array([0.0, 0.0, np.pi / 2, 1.0, 2.0, 3.0])
    T = pose_to_transform(pose)
    P = transform_points(T, np.array([[1.0, 0.0, 0.0]]))
    np.testing.assert_allclose(P, [[1.0, 3.0, 3.0]], atol=1e-12)


def test_checkerboard_points_layout():
    P = checkerboard_points((2, 3), 0.5)
    assert P.shape == (6, 3)
    np.testing.assert_array_equal(P[:3, 0], [0.0, 0.5, 1.0])
    np.testing.assert_array_equal(P[3:, 1], [0.5, 0.5, 0.5])
    assert np.all(P[:, 2] == 0.0)


def test_point_ray_offsets_are_orthogonal_to_rays():
    rng = np.random.default_rng(2)
    o = rng.normal(size=(50, 3))
    d = rng.normal(size=(50, 3))
    p = rng.normal(size=(50, 3))
    off = point_ray_offsets(o, d, p)
    assert off.shape == (50, 3)
    np.testing.assert_allclose(np.sum(off * d, axis=-1), 0.0, atol=1e-12)
    np.testing.assert_allclose(np.linalg.norm(off, axis=-1), point_ray_distance(o, d, p))
    # Moving the point along its ray leaves the offset unchanged.
    np.testing.assert_allclose(point_ray_offsets(o, d, p + 0.7 * d), off, atol=1e-12)
