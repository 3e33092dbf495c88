import numpy as np
from pyragraph import Matrix, ProcedureFactory, UnaryFunctionType
from pyragraph.core.logger import get_logger
from pyragraph.procedure import ForwardProcedure


class RecurrentCell(ForwardProcedure):
    """output = V tanh(W x + U h_previous)"""

    def __init__(self, input_size, state_size, rng):
        self.weight = Matrix(rng.standard_normal((state_size, input_size)) * 0.3)
        self.recurrent_weight = Matrix(rng.standard_normal((state_size, state_size)) * 0.3)
        self.output_weight = Matrix(rng.standard_normal((1, state_size)) * 0.3)
        self.input_size = input_size
        self.state_size = state_size
        self.inputs = None
        self.state = None

    @property
    def parameters(self):
        return [self.weight, self.recurrent_weight, self.output_weight]

    def get_input_matrices(self, reset_previous_input):
        self.inputs = Matrix.zeros(self.input_size, 1)
        if reset_previous_input or self.state is None:
            self.state = Matrix.zeros(self.state_size, 1)
        return {0: self.inputs}

    def get_forward_procedure(self):
        self.state = (self.weight @ self.inputs + self.recurrent_weight @ self.state).apply(UnaryFunctionType.TANH)
        return self.output_weight @ self.state


get_logger("INFO")
rng = np.random.default_rng(42)

# Task: output the running mean of a scalar sequence
cell = RecurrentCell(input_size=1, state_size=8, rng=rng)
procedure = ProcedureFactory().get_procedure(cell, parameter_matrices=cell.parameters)
print(procedure.describe_expression_chain())

learning_rate = 0.05
steps = 10
for epoch in range(300):
    sequence = rng.uniform(-1.0, 1.0, steps)
    targets = np.cumsum(sequence) / np.arange(1, steps + 1)

    outputs = procedure.calculate_expression({0: {t: Matrix([[value]]) for t, value in enumerate(sequence)}})
    predictions = np.array([outputs[0][t].get_value(0, 0) for t in range(steps)])
    loss = np.mean((predictions - targets) ** 2)

    # Backward pass
    gradients = {t: Matrix([[2.0 * (predictions[t] - targets[t]) / steps]]) for t in range(steps)}
    procedure.calculate_gradient({0: gradients})
    for parameter, gradient in procedure.get_parameter_gradients().items():
        parameter.data -= learning_rate * gradient.data

    if epoch % 50 == 0:
        print(f"Epoch {epoch}, Loss: {loss:.4f}")
