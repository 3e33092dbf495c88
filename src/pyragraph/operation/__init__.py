from pyragraph.operation.base import MatrixOperation, OperationGeometry
from pyragraph.operation.convolution import (
    Convolution, ConvolutionFilterGradient, ConvolutionInputGradient,
    Crosscorrelation, CrosscorrelationFilterGradient, CrosscorrelationInputGradient,
)
from pyragraph.operation.flatten import Flatten, Unflatten
from pyragraph.operation.pooling import (
    AveragePool, AveragePoolGradient, CyclicPool, CyclicPoolGradient,
    MaxPool, MaxPoolGradient, RandomPool, RandomPoolGradient,
)
from pyragraph.operation.winograd import WinogradConvolution

__all__ = [
    "MatrixOperation", "OperationGeometry",
    "Convolution", "ConvolutionFilterGradient", "ConvolutionInputGradient",
    "Crosscorrelation", "CrosscorrelationFilterGradient", "CrosscorrelationInputGradient",
    "Flatten", "Unflatten",
    "AveragePool", "AveragePoolGradient", "CyclicPool", "CyclicPoolGradient",
    "MaxPool", "MaxPoolGradient", "RandomPool", "RandomPoolGradient",
    "WinogradConvolution",
]
