from typing import Tuple


def format_shape(shape: Tuple[int, int, int]) -> str:
    return "x".join(str(dimension) for dimension in shape)


class MatrixException(Exception):
    """Base error for tensor, kernel and procedure failures."""


class DimensionMismatchException(MatrixException, ValueError):
    def __init__(self, expected: Tuple[int, int, int], actual: Tuple[int, int, int], context: str = ""):
        self.expected = expected
        self.actual = actual
        prefix = f"{context}: " if context else ""
        super().__init__(f"{prefix}Incompatible dimensions {format_shape(expected)} and {format_shape(actual)}")


class InvalidGeometryException(MatrixException, ValueError):
    pass


class ArgumentsNotDefinedException(MatrixException):
    pass


class ResultGradientNotDefinedException(MatrixException):
    pass


class ExpressionLockException(MatrixException):
    pass
