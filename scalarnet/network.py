"""
network.py
~~~~~~~~~~

Feed-forward neural network made of individual scalar neurons.

Every computed neuron holds one weighted edge per neuron of the previous
layer. Values are pulled on demand: reading an output neuron recursively
re-evaluates the whole upstream graph, nothing is cached. Training is
online; an error pushed into an output neuron walks back toward the input
layer and rewrites edge weights as it goes.

Edges address their source as ``(layer_index, neuron_index)``, and the
activation pair and learning rate travel through every call in a
``TrainingContext`` rather than through back-references from the neurons.
"""

import math
import time
import logging
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

import numpy as np

from scalarnet.activations import sigmoid, sigmoid_derivative

logger = logging.getLogger(__name__)

ActivationFunction = Callable[[float], float]
Example = Tuple[Sequence[float], Sequence[float]]


def _is_sequence(obj: Any) -> bool:
    """True for lists, tuples and numpy arrays. Strings do not count."""
    return isinstance(obj, (list, tuple, np.ndarray))


def _is_integer(obj: Any) -> bool:
    """True for ints, excluding bools."""
    return isinstance(obj, int) and not isinstance(obj, bool)


def hidden_layer_size(input_size: int, output_size: int) -> int:
    """
    Number of neurons in every hidden layer.

    Args:
        input_size: Neurons in the input layer
        output_size: Neurons in the output layer

    Returns:
        ``min(2*input_size - 1, ceil(2*input_size/3 + output_size))``
    """
    return min(
        input_size * 2 - 1,
        math.ceil(input_size * 2 / 3 + output_size)
    )


class TrainingContext:
    """Activation pair and learning rate shared by a whole network."""

    def __init__(
        self,
        activation_function: ActivationFunction = sigmoid,
        derivative_function: ActivationFunction = sigmoid_derivative,
        learning_rate: float = 0.5
    ):
        self.activation_function = activation_function
        self.derivative_function = derivative_function
        self.learning_rate = learning_rate

    def __repr__(self) -> str:
        return (
            f"TrainingContext(activation={self.activation_function.__name__}, "
            f"learning_rate={self.learning_rate})"
        )


class NeuronKind(Enum):
    """The two kinds of neuron a layer can hold."""

    INPUT = 'input'
    COMPUTED = 'computed'


class Edge:
    """Weighted connection from a neuron of the previous layer."""

    def __init__(self, source: Tuple[int, int], weight: float):
        self.source = source
        self.weight = weight

    def resolve(self, layers: Sequence['Layer']) -> 'Neuron':
        """Look up the source neuron in ``layers``."""
        layer_index, neuron_index = self.source
        return layers[layer_index].neurons[neuron_index]

    def __repr__(self) -> str:
        return f"Edge(source={self.source}, weight={self.weight})"


class Neuron:
    """
    A node producing one scalar value.

    An ``INPUT`` neuron stores a raw scalar and has no edges. A ``COMPUTED``
    neuron stores only its incoming edges; its value is the activation of
    the weighted sum of its sources and is recomputed on every read.
    """

    def __init__(
        self,
        kind: NeuronKind,
        value: float = 0.0,
        edges: Optional[List[Edge]] = None
    ):
        self.kind = kind
        self.value = value
        self.edges = edges if edges is not None else []

    @classmethod
    def input(cls, value: float = 0.0) -> 'Neuron':
        """Create an input leaf holding ``value``."""
        return cls(NeuronKind.INPUT, value=value)

    @classmethod
    def computed(cls, edges: List[Edge]) -> 'Neuron':
        """Create a computed neuron fed by ``edges``."""
        return cls(NeuronKind.COMPUTED, edges=edges)

    @property
    def is_input(self) -> bool:
        return self.kind is NeuronKind.INPUT

    def input_sum(
        self,
        layers: Sequence['Layer'],
        context: TrainingContext
    ) -> float:
        """
        Weighted sum of the source values.

        Each call re-evaluates every upstream neuron. Input neurons have
        no edges, so their sum is ``0.0``.
        """
        total = 0.0
        for edge in self.edges:
            total += edge.resolve(layers).get_value(layers, context) * edge.weight
        return total

    def get_value(
        self,
        layers: Sequence['Layer'],
        context: TrainingContext
    ) -> float:
        """
        Current output of the neuron.

        Args:
            layers: All layers of the network the neuron belongs to
            context: Activation pair and learning rate

        Returns:
            The stored scalar for an input neuron, otherwise the activation
            of ``input_sum``
        """
        if self.kind is NeuronKind.INPUT:
            return self.value
        return context.activation_function(self.input_sum(layers, context))

    def set_input(self, value: float) -> None:
        """Overwrite the scalar of an input neuron. Ignored otherwise."""
        if self.kind is not NeuronKind.INPUT:
            logger.debug("Ignoring set_input on a computed neuron")
            return
        self.value = value

    def propagate_error(
        self,
        error: float,
        layers: Sequence['Layer'],
        context: TrainingContext
    ) -> None:
        """
        Update incoming weights from ``error`` and push the error upstream.

        Edges are processed in construction order. Each edge is updated
        first, and the error handed to its source is computed from the
        updated weight. Later edges see weights already changed by earlier
        ones when they share upstream neurons. Ignored on input neurons.

        Args:
            error: Signed error at this neuron's output
            layers: All layers of the network the neuron belongs to
            context: Activation pair and learning rate
        """
        if self.kind is not NeuronKind.COMPUTED:
            return

        delta = error * context.derivative_function(
            self.input_sum(layers, context)
        )

        for edge in self.edges:
            source = edge.resolve(layers)
            edge.weight -= (
                source.get_value(layers, context) * delta
                * context.learning_rate
            )
            source.propagate_error(edge.weight * delta, layers, context)

    def __repr__(self) -> str:
        if self.kind is NeuronKind.INPUT:
            return f"Neuron(kind=input, value={self.value})"
        return f"Neuron(kind=computed, edges={len(self.edges)})"


class Layer:
    """Ordered, fixed-size collection of neurons of a single kind."""

    def __init__(self, neurons: List[Neuron]):
        self.neurons = neurons

    @classmethod
    def build(
        cls,
        size: int,
        layer_index: int,
        previous: Optional['Layer'],
        rng: np.random.Generator
    ) -> 'Layer':
        """
        Create a layer of ``size`` neurons.

        Without a previous layer every neuron is an input leaf. Otherwise
        each neuron gets one edge per neuron of ``previous``, weights drawn
        uniformly from ``[-0.5, 0.5)``.
        """
        if previous is None:
            return cls([Neuron.input() for _ in range(size)])

        neurons = []
        for _ in range(size):
            edges = [
                Edge((layer_index - 1, i), float(rng.random()) - 0.5)
                for i in range(len(previous))
            ]
            neurons.append(Neuron.computed(edges))
        return cls(neurons)

    @property
    def is_first_layer(self) -> bool:
        return self.neurons[0].is_input

    def set_input(self, values: Sequence[float]) -> None:
        """
        Assign one value per input neuron, in order.

        Ignored when this is not the input layer, when ``values`` is not a
        list, tuple or array, or when its length does not match the layer.
        """
        if not self.is_first_layer:
            logger.debug("Ignoring set_input on a non-input layer")
            return

        if not _is_sequence(values):
            logger.debug(f"Ignoring non-sequence input: {values!r}")
            return

        if len(values) != len(self.neurons):
            logger.debug(
                f"Ignoring input of length {len(values)} "
                f"for a layer of {len(self.neurons)} neurons"
            )
            return

        for neuron, value in zip(self.neurons, values):
            neuron.set_input(value)

    def values(
        self,
        layers: Sequence['Layer'],
        context: TrainingContext
    ) -> List[float]:
        return [neuron.get_value(layers, context) for neuron in self.neurons]

    def __len__(self) -> int:
        return len(self.neurons)

    def __getitem__(self, index: int) -> Neuron:
        return self.neurons[index]

    def __iter__(self):
        return iter(self.neurons)


class Network:
    """
    Layered network of scalar neurons trained by online backpropagation.

    Example:
        >>> net = Network(2, 1, rng=0)
        >>> net.sizes
        [2, 3, 1]
        >>> net.train(XOR_DATASET, epochs=100000)
    """

    def __init__(
        self,
        input_size: int,
        output_size: int,
        hidden_layers_count: int = 1,
        learning_rate: float = 0.5,
        activation_function: ActivationFunction = sigmoid,
        derivative_function: ActivationFunction = sigmoid_derivative,
        rng: Union[np.random.Generator, int, None] = None
    ):
        """
        Build the full topology with random initial weights.

        Args:
            input_size: Neurons in the input layer
            output_size: Neurons in the output layer
            hidden_layers_count: Number of hidden layers, all the same size
            learning_rate: Step size of every weight update
            activation_function: Applied to each computed neuron's input sum
            derivative_function: Derivative of ``activation_function``
            rng: numpy Generator, integer seed, or None for fresh entropy

        Raises:
            ValueError: If a size, count or the learning rate is out of range
        """
        if not _is_integer(input_size) or input_size < 1:
            raise ValueError(
                f"input_size must be a positive integer, got {input_size}"
            )
        if not _is_integer(output_size) or output_size < 1:
            raise ValueError(
                f"output_size must be a positive integer, got {output_size}"
            )
        if not _is_integer(hidden_layers_count) or hidden_layers_count < 0:
            raise ValueError(
                "hidden_layers_count must be a non-negative integer, "
                f"got {hidden_layers_count}"
            )
        if (
            isinstance(learning_rate, bool)
            or not isinstance(learning_rate, (int, float))
            or not (learning_rate > 0 and math.isfinite(learning_rate))
        ):
            raise ValueError(
                f"learning_rate must be a positive finite number, got {learning_rate}"
            )

        if not isinstance(rng, np.random.Generator):
            rng = np.random.default_rng(rng)

        self.context = TrainingContext(
            activation_function, derivative_function, learning_rate
        )

        hidden_size = hidden_layer_size(input_size, output_size)
        sizes = [input_size] + [hidden_size] * hidden_layers_count + [output_size]

        self.layers: List[Layer] = []
        for index, size in enumerate(sizes):
            previous = self.layers[-1] if self.layers else None
            self.layers.append(Layer.build(size, index, previous, rng))

        logger.debug(f"Built network with layer sizes {sizes}")

    @property
    def sizes(self) -> List[int]:
        return [len(layer) for layer in self.layers]

    @property
    def learning_rate(self) -> float:
        return self.context.learning_rate

    @property
    def activation_function(self) -> ActivationFunction:
        return self.context.activation_function

    @property
    def derivative_function(self) -> ActivationFunction:
        return self.context.derivative_function

    @property
    def input_layer(self) -> Layer:
        return self.layers[0]

    @property
    def output_layer(self) -> Layer:
        return self.layers[-1]

    def set_input(self, values: Sequence[float]) -> None:
        """Assign the input layer. See ``Layer.set_input``."""
        self.input_layer.set_input(values)

    def get_prediction(self) -> List[float]:
        """Run a full forward pass and return the output layer values."""
        return self.output_layer.values(self.layers, self.context)

    @property
    def prediction(self) -> List[float]:
        return self.get_prediction()

    def predict(self, values: Sequence[float]) -> List[float]:
        """Set the input and return the resulting prediction."""
        self.set_input(values)
        return self.get_prediction()

    def train_once(self, dataset: Sequence[Example]) -> None:
        """
        One online pass over ``dataset``.

        For every ``(input, expected)`` pair the raw difference
        ``prediction[i] - expected[i]`` is pushed into output neuron ``i``
        before moving on to the next example. Ignored if ``dataset`` is not
        a list, tuple or array.
        """
        if not _is_sequence(dataset):
            logger.debug(f"Ignoring non-sequence dataset: {dataset!r}")
            return

        for inputs, expected in dataset:
            self.set_input(inputs)
            for i, result in enumerate(self.get_prediction()):
                self.output_layer[i].propagate_error(
                    result - expected[i], self.layers, self.context
                )

    def train(
        self,
        dataset: Sequence[Example],
        epochs: int = 100000,
        callback: Optional[Callable[[Dict[str, Any]], None]] = None,
        yield_func: Optional[Callable[[], None]] = None,
        report_every: int = 1000
    ) -> None:
        """
        Run ``train_once`` exactly ``epochs`` times.

        Blocks until every epoch has run. There is no early stopping and
        the dataset order never changes between epochs.

        Args:
            dataset: Sequence of ``(input_vector, expected_vector)`` pairs
            epochs: Number of passes over the dataset
            callback: Called with progress info every ``report_every``
                epochs and after the last one
            yield_func: Called after each epoch, lets a cooperative
                scheduler run other tasks during training
            report_every: Epoch interval between ``callback`` calls

        Raises:
            ValueError: If ``epochs`` is negative or ``report_every`` < 1
        """
        if not _is_integer(epochs) or epochs < 0:
            raise ValueError(f"epochs must be a non-negative integer, got {epochs}")
        if report_every < 1:
            raise ValueError(f"report_every must be at least 1, got {report_every}")

        logger.info(f"Training network {self.sizes} for {epochs} epochs")
        start_time = time.time()

        for epoch in range(1, epochs + 1):
            self.train_once(dataset)

            if callback is not None and (
                epoch % report_every == 0 or epoch == epochs
            ):
                callback({
                    'epoch': epoch,
                    'total_epochs': epochs,
                    'loss': self.evaluate(dataset),
                    'elapsed_time': time.time() - start_time
                })

            if yield_func is not None:
                yield_func()

        logger.info(
            f"Training finished after {epochs} epochs "
            f"in {time.time() - start_time:.2f}s"
        )

    def evaluate(self, dataset: Sequence[Example]) -> float:
        """
        Mean squared error of the current predictions over ``dataset``.

        Weights are not touched, but the input layer is left holding the
        last example's input. Returns ``0.0`` for an empty dataset.
        """
        if not _is_sequence(dataset) or len(dataset) == 0:
            return 0.0

        total = 0.0
        count = 0
        for inputs, expected in dataset:
            for result, target in zip(self.predict(inputs), expected):
                total += (result - target) ** 2
                count += 1
        return total / count if count else 0.0

    def weights(self) -> List[List[List[float]]]:
        """Edge weights of every computed layer, ``[layer][neuron][edge]``."""
        return [
            [[edge.weight for edge in neuron.edges] for neuron in layer]
            for layer in self.layers[1:]
        ]

    def __repr__(self) -> str:
        return f"Network(sizes={self.sizes}, {self.context!r})"
