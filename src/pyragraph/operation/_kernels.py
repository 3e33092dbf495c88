"""Per-output-position loops for the sliding-window kernels.

Tensors are laid out ``(depth, rows, columns)``. Every loop takes explicit
boolean masks; an unmasked tensor is passed an all-false mask.
"""
import numba
import numpy as np


@numba.jit(nopython=True)
def crosscorrelate(inputs, input_mask, filters, filter_mask, result,
                   stride, dilation, flip, depth_separable):
    output_depth, output_rows, output_columns = result.shape
    input_depth = inputs.shape[0]
    filter_rows = filters.shape[1]
    filter_columns = filters.shape[2]
    for depth in range(output_depth):
        first_channel = depth if depth_separable else 0
        last_channel = depth + 1 if depth_separable else input_depth
        for row in range(output_rows):
            for column in range(output_columns):
                value = 0.0
                for channel in range(first_channel, last_channel):
                    for filter_row in range(filter_rows):
                        input_row = row * stride + filter_row * dilation
                        kernel_row = filter_rows - 1 - filter_row if flip else filter_row
                        for filter_column in range(filter_columns):
                            input_column = column * stride + filter_column * dilation
                            kernel_column = filter_columns - 1 - filter_column if flip else filter_column
                            if input_mask[channel, input_row, input_column]:
                                continue
                            if filter_mask[channel, kernel_row, kernel_column]:
                                continue
                            value += inputs[channel, input_row, input_column] * filters[channel, kernel_row, kernel_column]
                result[depth, row, column] = value


@numba.jit(nopython=True)
def crosscorrelate_input_gradient(output_gradient, filters, input_mask, filter_mask, input_gradient,
                                  stride, dilation, flip, depth_separable):
    output_depth, output_rows, output_columns = output_gradient.shape
    input_depth = input_gradient.shape[0]
    filter_rows = filters.shape[1]
    filter_columns = filters.shape[2]
    for depth in range(output_depth):
        first_channel = depth if depth_separable else 0
        last_channel = depth + 1 if depth_separable else input_depth
        for row in range(output_rows):
            for column in range(output_columns):
                gradient = output_gradient[depth, row, column]
                for channel in range(first_channel, last_channel):
                    for filter_row in range(filter_rows):
                        input_row = row * stride + filter_row * dilation
                        kernel_row = filter_rows - 1 - filter_row if flip else filter_row
                        for filter_column in range(filter_columns):
                            input_column = column * stride + filter_column * dilation
                            kernel_column = filter_columns - 1 - filter_column if flip else filter_column
                            if input_mask[channel, input_row, input_column]:
                                continue
                            if filter_mask[channel, kernel_row, kernel_column]:
                                continue
                            input_gradient[channel, input_row, input_column] += gradient * filters[channel, kernel_row, kernel_column]


@numba.jit(nopython=True)
def crosscorrelate_filter_gradient(output_gradient, inputs, input_mask, filter_mask, filter_gradient,
                                   stride, dilation, flip, depth_separable):
    output_depth, output_rows, output_columns = output_gradient.shape
    input_depth = inputs.shape[0]
    filter_rows = filter_gradient.shape[1]
    filter_columns = filter_gradient.shape[2]
    for depth in range(output_depth):
        first_channel = depth if depth_separable else 0
        last_channel = depth + 1 if depth_separable else input_depth
        for row in range(output_rows):
            for column in range(output_columns):
                gradient = output_gradient[depth, row, column]
                for channel in range(first_channel, last_channel):
                    for filter_row in range(filter_rows):
                        input_row = row * stride + filter_row * dilation
                        kernel_row = filter_rows - 1 - filter_row if flip else filter_row
                        for filter_column in range(filter_columns):
                            input_column = column * stride + filter_column * dilation
                            kernel_column = filter_columns - 1 - filter_column if flip else filter_column
                            if input_mask[channel, input_row, input_column]:
                                continue
                            if filter_mask[channel, kernel_row, kernel_column]:
                                continue
                            filter_gradient[channel, kernel_row, kernel_column] += gradient * inputs[channel, input_row, input_column]


@numba.jit(nopython=True)
def max_pool(inputs, input_mask, result, positions, filter_rows, filter_columns, stride):
    output_depth, output_rows, output_columns = result.shape
    input_columns = inputs.shape[2]
    for depth in range(output_depth):
        for row in range(output_rows):
            for column in range(output_columns):
                best_value = 0.0
                best_position = -1
                for filter_row in range(filter_rows):
                    input_row = row * stride + filter_row
                    for filter_column in range(filter_columns):
                        input_column = column * stride + filter_column
                        if input_mask[depth, input_row, input_column]:
                            continue
                        value = inputs[depth, input_row, input_column]
                        # strict comparison keeps the first maximum in row-major order
                        if best_position == -1 or value > best_value:
                            best_value = value
                            best_position = input_row * input_columns + input_column
                result[depth, row, column] = best_value
                positions[depth, row, column] = best_position


@numba.jit(nopython=True)
def select_pool(inputs, input_mask, ranks, result, positions, filter_rows, filter_columns, stride):
    output_depth, output_rows, output_columns = result.shape
    input_columns = inputs.shape[2]
    for depth in range(output_depth):
        for row in range(output_rows):
            for column in range(output_columns):
                available = 0
                for filter_row in range(filter_rows):
                    for filter_column in range(filter_columns):
                        if not input_mask[depth, row * stride + filter_row, column * stride + filter_column]:
                            available += 1
                result[depth, row, column] = 0.0
                positions[depth, row, column] = -1
                if available == 0:
                    continue
                target = ranks[depth, row, column] % available
                seen = 0
                for filter_row in range(filter_rows):
                    input_row = row * stride + filter_row
                    for filter_column in range(filter_columns):
                        input_column = column * stride + filter_column
                        if input_mask[depth, input_row, input_column]:
                            continue
                        if seen == target:
                            result[depth, row, column] = inputs[depth, input_row, input_column]
                            positions[depth, row, column] = input_row * input_columns + input_column
                        seen += 1


@numba.jit(nopython=True)
def scatter_positions(output_gradient, positions, input_gradient):
    output_depth, output_rows, output_columns = output_gradient.shape
    input_columns = input_gradient.shape[2]
    for depth in range(output_depth):
        for row in range(output_rows):
            for column in range(output_columns):
                position = positions[depth, row, column]
                if position < 0:
                    continue
                input_gradient[depth, position // input_columns, position % input_columns] += output_gradient[depth, row, column]


@numba.jit(nopython=True)
def average_pool(inputs, input_mask, result, filter_rows, filter_columns, stride):
    output_depth, output_rows, output_columns = result.shape
    window_size = filter_rows * filter_columns
    for depth in range(output_depth):
        for row in range(output_rows):
            for column in range(output_columns):
                value = 0.0
                for filter_row in range(filter_rows):
                    input_row = row * stride + filter_row
                    for filter_column in range(filter_columns):
                        input_column = column * stride + filter_column
                        if not input_mask[depth, input_row, input_column]:
                            value += inputs[depth, input_row, input_column]
                result[depth, row, column] = value / window_size


@numba.jit(nopython=True)
def average_pool_gradient(output_gradient, input_mask, input_gradient, filter_rows, filter_columns, stride):
    output_depth, output_rows, output_columns = output_gradient.shape
    window_size = filter_rows * filter_columns
    for depth in range(output_depth):
        for row in range(output_rows):
            for column in range(output_columns):
                share = output_gradient[depth, row, column] / window_size
                for filter_row in range(filter_rows):
                    input_row = row * stride + filter_row
                    for filter_column in range(filter_columns):
                        input_column = column * stride + filter_column
                        if not input_mask[depth, input_row, input_column]:
                            input_gradient[depth, input_row, input_column] += share


@numba.jit(nopython=True)
def sparse_left_dot(left, left_mask, right, out):
    for row in range(left.shape[0]):
        for column in range(right.shape[1]):
            value = 0.0
            for inner in range(left.shape[1]):
                if not left_mask[row, inner]:
                    value += left[row, inner] * right[inner, column]
            out[row, column] = value


@numba.jit(nopython=True)
def sparse_right_dot(left, right, right_mask, out):
    for row in range(left.shape[0]):
        for column in range(right.shape[1]):
            value = 0.0
            for inner in range(left.shape[1]):
                if not right_mask[inner, column]:
                    value += left[row, inner] * right[inner, column]
            out[row, column] = value


@numba.jit(nopython=True)
def winograd(inputs, input_mask, preprocessed, at, at_mask, a, a_mask, bt, bt_mask, b, b_mask,
             result, depth_separable):
    output_depth, output_rows, output_columns = result.shape
    input_depth, input_rows, input_columns = inputs.shape
    tile = np.zeros((4, 4))
    left = np.zeros((4, 4))
    transformed = np.zeros((4, 4))
    product = np.zeros((4, 4))
    half = np.zeros((2, 4))
    out = np.zeros((2, 2))
    total = np.zeros((2, 2))
    for depth in range(output_depth):
        first_channel = depth if depth_separable else 0
        last_channel = depth + 1 if depth_separable else input_depth
        for tile_row in range(0, output_rows, 2):
            for tile_column in range(0, output_columns, 2):
                total[:, :] = 0.0
                for channel in range(first_channel, last_channel):
                    for i in range(4):
                        for j in range(4):
                            input_row = tile_row + i
                            input_column = tile_column + j
                            if input_row < input_rows and input_column < input_columns \
                                    and not input_mask[channel, input_row, input_column]:
                                tile[i, j] = inputs[channel, input_row, input_column]
                            else:
                                tile[i, j] = 0.0
                    sparse_left_dot(bt, bt_mask, tile, left)
                    sparse_right_dot(left, b, b_mask, transformed)
                    for i in range(4):
                        for j in range(4):
                            product[i, j] = preprocessed[channel, i, j] * transformed[i, j]
                    sparse_left_dot(at, at_mask, product, half)
                    sparse_right_dot(half, a, a_mask, out)
                    for i in range(2):
                        for j in range(2):
                            total[i, j] += out[i, j]
                for i in range(2):
                    for j in range(2):
                        if tile_row + i < output_rows and tile_column + j < output_columns:
                            result[depth, tile_row + i, tile_column + j] = total[i, j]
