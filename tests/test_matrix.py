import numpy as np
import pytest

from pyragraph import Matrix
from pyragraph.core import DimensionMismatchException, InvalidGeometryException, UnaryFunctionType


def test_shape_and_layout():
    matrix = Matrix(np.arange(24.0).reshape(2, 3, 4))
    assert matrix.shape == (3, 4, 2)
    assert (matrix.rows, matrix.columns, matrix.depth) == (3, 4, 2)
    assert matrix.get_value(1, 2, depth=1) == 18.0
    assert not matrix.is_scalar


def test_scalar_defaults():
    assert Matrix.scalar(3).is_scalar
    assert Matrix([[5.0]]).is_scalar
    assert not Matrix([[5.0]], is_scalar=False).is_scalar


def test_rejects_empty_and_high_rank_data():
    with pytest.raises(InvalidGeometryException):
        Matrix(np.zeros((1, 0, 2)))
    with pytest.raises(InvalidGeometryException):
        Matrix(np.zeros((1, 1, 1, 1)))


def test_scalar_broadcast():
    matrix = Matrix([[1.0, 2.0], [3.0, 4.0]])
    np.testing.assert_allclose((matrix + 1).data[0], [[2.0, 3.0], [4.0, 5.0]])
    np.testing.assert_allclose((2 * matrix).data[0], [[2.0, 4.0], [6.0, 8.0]])
    np.testing.assert_allclose((1 - matrix).data[0], [[0.0, -1.0], [-2.0, -3.0]])
    np.testing.assert_allclose((-matrix).data[0], [[-1.0, -2.0], [-3.0, -4.0]])


def test_mismatched_shapes_name_both_dimensions():
    with pytest.raises(DimensionMismatchException) as error:
        Matrix.zeros(2, 2) + Matrix.zeros(3, 3)
    assert "2x2x1" in str(error.value)
    assert "3x3x1" in str(error.value)


def test_dot_product():
    first = Matrix([[1.0, 2.0], [3.0, 4.0]])
    second = Matrix([[1.0], [1.0]])
    np.testing.assert_allclose((first @ second).data[0], [[3.0], [7.0]])
    with pytest.raises(DimensionMismatchException):
        second @ first.flatten()


def test_statistics():
    matrix = Matrix([[1.0, 2.0, 3.0, 4.0]])
    assert matrix.sum() == 10.0
    assert matrix.mean() == 2.5
    assert matrix.variance() == pytest.approx(5.0 / 3.0)
    assert matrix.standard_deviation() == pytest.approx(np.sqrt(5.0 / 3.0))
    assert matrix.norm(1) == pytest.approx(10.0)
    assert matrix.norm_as_matrix().get_value(0, 0) == pytest.approx(np.sqrt(30.0))


def test_flatten_is_column_major_per_depth():
    matrix = Matrix(np.array([[[1.0, 2.0], [3.0, 4.0]], [[5.0, 6.0], [7.0, 8.0]]]))
    flat = matrix.flatten()
    assert flat.shape == (8, 1, 1)
    np.testing.assert_allclose(flat.data[0, :, 0], [1.0, 3.0, 2.0, 4.0, 5.0, 7.0, 6.0, 8.0])


def test_flip_reverses_spatial_axes():
    matrix = Matrix([[1.0, 2.0], [3.0, 4.0]])
    matrix.set_mask_at(0, 0)
    flipped = matrix.flip()
    np.testing.assert_allclose(flipped.data[0], [[4.0, 3.0], [2.0, 1.0]])
    assert flipped.get_mask_at(1, 1)
    assert not flipped.get_mask_at(0, 0)


def test_mask_accessors():
    matrix = Matrix.zeros(2, 3)
    assert not matrix.has_mask
    matrix.set_mask()
    assert matrix.has_mask and not matrix.mask.any()
    matrix.set_mask_at(1, 2)
    assert matrix.get_mask_at(1, 2)
    with pytest.raises(DimensionMismatchException):
        matrix.set_mask(np.zeros((3, 3), dtype=bool))
    matrix.clear_mask()
    assert not matrix.get_mask_at(1, 2)


def test_get_new_matrix_is_zeroed_and_unattached():
    matrix = Matrix.ones(2, 2, 3)
    matrix.set_mask()
    empty = matrix.get_new_matrix()
    assert empty.shape == (2, 2, 3)
    assert not empty.data.any()
    assert not empty.has_mask
    assert empty.procedure_factory is None


def test_apply_accepts_function_type():
    matrix = Matrix([[-1.0], [2.0]])
    np.testing.assert_allclose(matrix.apply(UnaryFunctionType.RELU).data[0, :, 0], [0.0, 2.0])


def test_random_is_reproducible_with_generator():
    first = Matrix.random(3, 3, random_generator=np.random.default_rng(5))
    second = Matrix.random(3, 3, random_generator=np.random.default_rng(5))
    np.testing.assert_array_equal(first.data, second.data)


def test_identity_is_the_hash_key():
    first = Matrix.zeros(2, 2)
    second = Matrix.zeros(2, 2)
    assert len({first, second}) == 2
