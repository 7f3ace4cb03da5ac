"""
scalarnet package
~~~~~~~~~~~~~~~~~

Minimal feed-forward neural network built from scalar neurons and weighted
edges. Contains the network core, the XOR dataset, a command-line driver
and a REST API server.
"""

from scalarnet.activations import sigmoid, sigmoid_derivative
from scalarnet.network import (
    Edge,
    Layer,
    Network,
    Neuron,
    NeuronKind,
    TrainingContext,
    hidden_layer_size
)

__version__ = "1.0.0"

__all__ = [
    'Edge',
    'Layer',
    'Network',
    'Neuron',
    'NeuronKind',
    'TrainingContext',
    'hidden_layer_size',
    'sigmoid',
    'sigmoid_derivative',
]
