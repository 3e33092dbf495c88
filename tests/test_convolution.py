import numpy as np
import pytest

from pyragraph import Matrix
from pyragraph.core import DimensionMismatchException, InvalidGeometryException
from pyragraph.operation import (
    Convolution, ConvolutionFilterGradient, ConvolutionInputGradient,
    CrosscorrelationFilterGradient, CrosscorrelationInputGradient, OperationGeometry,
)


def reference_crosscorrelate(inputs, filters, stride=1, dilation=1, depth_separable=True):
    depth, rows, columns = inputs.shape
    _, filter_rows, filter_columns = filters.shape
    output_rows = (rows - ((filter_rows - 1) * dilation + 1)) // stride + 1
    output_columns = (columns - ((filter_columns - 1) * dilation + 1)) // stride + 1
    result = np.zeros((depth, output_rows, output_columns))
    for channel in range(depth):
        for row in range(output_rows):
            for column in range(output_columns):
                window = inputs[channel,
                                row * stride:row * stride + (filter_rows - 1) * dilation + 1:dilation,
                                column * stride:column * stride + (filter_columns - 1) * dilation + 1:dilation]
                result[channel, row, column] = np.sum(window * filters[channel])
    if not depth_separable:
        return result.sum(axis=0, keepdims=True)
    return result


def test_five_by_five_with_three_by_three_ones():
    inputs = Matrix.ones(5, 5)
    filters = Matrix.ones(3, 3)
    result = inputs.crosscorrelate(filters)
    assert result.shape == (3, 3, 1)
    np.testing.assert_allclose(result.data, 9.0)

    operation = CrosscorrelationFilterGradient.for_operands(inputs, filters)
    filter_gradient = operation.compute_backward(Matrix.ones(3, 3), inputs, filters)
    np.testing.assert_allclose(filter_gradient.data, 9.0)


@pytest.mark.parametrize("stride,dilation", [(1, 1), (2, 1), (1, 2), (2, 2)])
@pytest.mark.parametrize("depth_separable", [True, False])
def test_crosscorrelate_matches_reference(random_matrix, stride, dilation, depth_separable):
    inputs = random_matrix(7, 8, 2)
    filters = random_matrix(3, 2, 2)
    result = inputs.crosscorrelate(filters, stride=stride, dilation=dilation, depth_separable=depth_separable)
    expected = reference_crosscorrelate(inputs.data, filters.data, stride, dilation, depth_separable)
    np.testing.assert_allclose(result.data, expected, atol=1e-12)


def test_output_geometry():
    geometry = OperationGeometry.sliding_window((10, 9, 3), 3, 2, stride=2, dilation=2, depth_separable=False)
    assert geometry.shape == ((10 - 5) // 2 + 1, (9 - 3) // 2 + 1, 1)
    assert geometry.filter_shape == (3, 2, 3)


@pytest.mark.parametrize("depth_separable", [True, False])
def test_convolution_is_crosscorrelation_with_flipped_filter(random_matrix, depth_separable):
    inputs = random_matrix(6, 6, 2)
    filters = random_matrix(3, 3, 2)
    gradient = random_matrix(4, 4, 2 if depth_separable else 1)

    np.testing.assert_allclose(inputs.convolve(filters, depth_separable=depth_separable).data,
                               inputs.crosscorrelate(filters.flip(), depth_separable=depth_separable).data,
                               atol=1e-12)

    convolution_input = ConvolutionInputGradient.for_operands(inputs, filters, depth_separable=depth_separable)
    crosscorrelation_input = CrosscorrelationInputGradient.for_operands(inputs, filters,
                                                                        depth_separable=depth_separable)
    np.testing.assert_allclose(convolution_input.compute_backward(gradient, inputs, filters).data,
                               crosscorrelation_input.compute_backward(gradient, inputs, filters.flip()).data,
                               atol=1e-12)

    convolution_filter = ConvolutionFilterGradient.for_operands(inputs, filters, depth_separable=depth_separable)
    crosscorrelation_filter = CrosscorrelationFilterGradient.for_operands(inputs, filters,
                                                                          depth_separable=depth_separable)
    np.testing.assert_allclose(convolution_filter.compute_backward(gradient, inputs, filters).data,
                               crosscorrelation_filter.compute_backward(gradient, inputs, filters.flip()).flip().data,
                               atol=1e-12)


def test_unmasked_and_all_false_mask_agree(random_matrix):
    inputs = random_matrix(5, 5, 2)
    filters = random_matrix(2, 2, 2)
    masked_inputs = inputs.copy()
    masked_inputs.set_mask()
    masked_filters = filters.copy()
    masked_filters.set_mask()
    np.testing.assert_array_equal(inputs.crosscorrelate(filters).data,
                                  masked_inputs.crosscorrelate(masked_filters).data)
    np.testing.assert_array_equal(inputs.convolve(filters, depth_separable=False).data,
                                  masked_inputs.convolve(masked_filters, depth_separable=False).data)


@pytest.mark.parametrize("masked_operand", ["input", "filter"])
def test_fully_masked_operand_gives_zero_output_and_gradients(random_matrix, masked_operand):
    inputs = random_matrix(6, 6, 2)
    filters = random_matrix(3, 3, 2)
    masked = inputs if masked_operand == "input" else filters
    masked.set_mask(np.ones(masked.data.shape, dtype=bool))

    np.testing.assert_array_equal(inputs.convolve(filters).data, 0.0)
    np.testing.assert_array_equal(inputs.crosscorrelate(filters).data, 0.0)
    np.testing.assert_allclose(inputs.winograd_convolve(filters).data, 0.0, atol=1e-12)

    output_gradient = random_matrix(4, 4, 2)
    for gradient_type in (ConvolutionInputGradient, CrosscorrelationInputGradient,
                          ConvolutionFilterGradient, CrosscorrelationFilterGradient):
        operation = gradient_type.for_operands(inputs, filters)
        gradient = operation.compute_backward(output_gradient, inputs, filters)
        np.testing.assert_array_equal(gradient.data, 0.0)


def test_masked_cells_are_skipped(random_matrix):
    inputs = random_matrix(4, 4)
    filters = random_matrix(2, 2)
    masked = inputs.copy()
    masked.set_mask_at(1, 2)
    zeroed = inputs.copy()
    zeroed.set_value(1, 2, 0.0)
    np.testing.assert_allclose(masked.crosscorrelate(filters).data, zeroed.crosscorrelate(filters).data)

    masked_filter = filters.copy()
    masked_filter.set_mask_at(0, 1)
    zeroed_filter = filters.copy()
    zeroed_filter.set_value(0, 1, 0.0)
    np.testing.assert_allclose(inputs.crosscorrelate(masked_filter).data,
                               inputs.crosscorrelate(zeroed_filter).data)

    operation = CrosscorrelationInputGradient.for_operands(masked, filters)
    input_gradient = operation.compute_backward(Matrix.ones(3, 3), masked, filters)
    assert input_gradient.get_value(1, 2) == 0.0


def test_filter_depth_must_match_input(random_matrix):
    with pytest.raises(DimensionMismatchException) as error:
        random_matrix(4, 4, 2).crosscorrelate(random_matrix(2, 2, 1))
    assert "2x2x2" in str(error.value)


def test_operands_must_match_geometry(random_matrix):
    operation = Convolution.for_operands(random_matrix(4, 4), random_matrix(2, 2))
    with pytest.raises(DimensionMismatchException):
        operation.compute_forward(random_matrix(5, 5), random_matrix(2, 2))


def test_filter_larger_than_input_is_rejected(random_matrix):
    with pytest.raises(InvalidGeometryException):
        random_matrix(3, 3).crosscorrelate(random_matrix(2, 2), dilation=3)
