"""Tests for SE3 rigid transforms."""

import numpy as np
import pytest

from stereovo.frontend.pose import SE3


@pytest.fixture
def pose() -> SE3:
    return SE3.from_rvec_tvec(np.array([0.1, -0.2, 0.3]), np.array([1.0, 2.0, -0.5]))


class TestSE3:
    def test_identity(self):
        identity = SE3.identity()

        np.testing.assert_array_equal(identity.to_matrix(), np.eye(4))
        np.testing.assert_array_equal(identity.position, np.zeros(3))

    def test_inverse_composes_to_identity(self, pose):
        result = pose @ pose.inverse()

        np.testing.assert_allclose(result.to_matrix(), np.eye(4), atol=1e-12)

    def test_compose_matches_matrix_product(self, pose):
        other = SE3.from_rvec_tvec(np.array([0.0, 0.5, 0.0]), np.array([0.0, 0.0, 1.0]))

        np.testing.assert_allclose(
            pose.compose(other).to_matrix(), pose.to_matrix() @ other.to_matrix()
        )

    def test_transform_points(self, pose):
        points = np.array([[0.0, 0.0, 1.0], [1.0, -1.0, 2.0]])

        expected = (pose.rotation @ points.T).T + pose.translation
        np.testing.assert_allclose(pose.transform_points(points), expected)
        np.testing.assert_allclose(pose.transform_points(points[0]), expected[:1])

    def test_rvec_tvec_round_trip(self, pose):
        rvec, tvec = pose.to_rvec_tvec()

        np.testing.assert_allclose(rvec, [0.1, -0.2, 0.3], atol=1e-12)
        np.testing.assert_allclose(tvec, [1.0, 2.0, -0.5])

    def test_rotation_angle(self, pose):
        turned = pose @ SE3.from_rvec_tvec(np.array([0.0, 0.0, 0.25]), np.zeros(3))

        assert pose.rotation_angle_to(turned) == pytest.approx(0.25)
        assert pose.rotation_angle_to(pose) == pytest.approx(0.0, abs=1e-7)

    def test_position_is_a_copy(self, pose):
        position = pose.position
        position[0] = 100.0

        assert pose.translation[0] == 1.0

    def test_invalid_shapes(self):
        with pytest.raises(ValueError, match="Rotation"):
            SE3(rotation=np.eye(2), translation=np.zeros(3))
        with pytest.raises(ValueError, match="Translation"):
            SE3(rotation=np.eye(3), translation=np.zeros(4))
        with pytest.raises(ValueError):
            SE3.identity().transform_points(np.zeros((2, 2)))

    def test_repr(self, pose):
        assert repr(pose) == "SE3(position=[1.000, 2.000, -0.500])"
