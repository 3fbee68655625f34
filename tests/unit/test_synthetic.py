from __future__ import annotations

from pathlib import Path

import numpy as np
import pytest

from weldpath.core.pointset import PointSet
from weldpath.examples.synthetic import SHAPES, generate_points, hemisphere, vessel_segment, weld_seam


def test_hemisphere_lies_on_sphere() -> None:
    cloud = hemisphere(count=200, radius=0.5, seed=4)
    np.testing.assert_allclose(np.linalg.norm(cloud.points, axis=1), 0.5)
    assert cloud.points[:, 2].min() >= 0.0
    np.testing.assert_allclose(cloud.points / 0.5, cloud.normals)


def test_weld_seam_has_floor_and_wall() -> None:
    cloud = weld_seam(count=100, width=0.1, seed=1)
    floor = cloud.normals[:, 2] == 1.0
    wall = cloud.normals[:, 1] == 1.0
    assert floor.sum() == 50
    assert wall.sum() == 50
    assert np.all(cloud.points[floor, 2] == 0.0)
    assert np.all(cloud.points[wall, 1] == 0.0)



def test_vessel_segment_has_two_walls() -> None:
    cloud = vessel_segment(count=200, outer_radius=0.5, thickness=0.05, height=0.8, noise=0.0, seed=2)
    radius = np.linalg.norm(cloud.points[:, :2], axis=1)
    np.testing.assert_allclose(radius[:100], 0.5)
    np.testing.assert_allclose(radius[100:], 0.45)
    assert np.abs(cloud.points[:, 2]).max() <= 0.4
    # outer normals face away from the axis, inner normals towards it
    radial = cloud.points[:, :2] / radius[:, None]
    np.testing.assert_allclose(cloud.normals[:100, :2], radial[:100])
    np.testing.assert_allclose(cloud.normals[100:, :2], -radial[100:])
    np.testing.assert_allclose(cloud.normals[:, 2], 0.0)
    with pytest.raises(ValueError):
        vessel_segment(thickness=0.6)


def test_vessel_segment_default_noise_stays_small() -> None:
    cloud = vessel_segment(count=100, seed=5)
    radius = np.linalg.norm(cloud.points[:, :2], axis=1)
    assert np.all(np.abs(radius[:50] - 0.5) < 0.005)
    assert np.all(np.abs(radius[50:] - 0.45) < 0.005)


@pytest.mark.parametrize("shape", sorted(SHAPES))
def test_generated_ply_reloads(shape: str, tmp_path: Path) -> None:
    path = tmp_path / f"{shape}.ply"
    cloud = generate_points(shape, 50, path, seed=3)
    loaded = PointSet.from_file(path)
    assert len(loaded) == 50
    np.testing.assert_allclose(loaded.points, cloud.points, atol=1e-6)
    assert loaded.has_normals


def test_unknown_shape(tmp_path: Path) -> None:
    with pytest.raises(ValueError):
        generate_points("cube", 10, tmp_path / "cube.ply")
