"""
activations.py
~~~~~~~~~~~~~~

Default activation/derivative pair for the network.

Any pair of ``float -> float`` callables can be passed to ``Network``
instead; the derivative must be taken with respect to the weighted input
sum, not the activation output.
"""

import math


def sigmoid(x: float) -> float:
    """The logistic function."""
    # Split on sign so math.exp never overflows for large |x|
    if x >= 0:
        return 1.0 / (1.0 + math.exp(-x))
    z = math.exp(x)
    return z / (1.0 + z)


def sigmoid_derivative(x: float) -> float:
    """Derivative of the logistic function evaluated at ``x``."""
    return sigmoid(x) * (1.0 - sigmoid(x))
