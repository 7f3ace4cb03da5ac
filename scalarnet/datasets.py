"""
datasets.py
~~~~~~~~~~~

Training sets shipped with the package, plus shape checks for datasets
that arrive from outside (e.g. JSON request bodies).
"""

# Each entry is a tuple of (input_vector, expected_vector)
XOR_DATASET = [
    ([0, 0], [0]),
    ([0, 1], [1]),
    ([1, 0], [1]),
    ([1, 1], [0]),
]


def is_valid_vector(values, size: int) -> bool:
    """True if ``values`` is a list or tuple of ``size`` numbers."""
    if not isinstance(values, (list, tuple)) or len(values) != size:
        return False
    return all(
        isinstance(v, (int, float)) and not isinstance(v, bool)
        for v in values
    )


def is_valid_dataset(dataset, input_size: int, output_size: int) -> bool:
    """
    Check that every example matches the given layer sizes.

    Args:
        dataset: Candidate list of (input_vector, expected_vector) pairs
        input_size: Expected length of every input vector
        output_size: Expected length of every expected vector

    Returns:
        bool: True if the dataset is a non-empty list of well-formed pairs
    """
    if not isinstance(dataset, (list, tuple)) or not dataset:
        return False

    for example in dataset:
        if not isinstance(example, (list, tuple)) or len(example) != 2:
            return False
        inputs, expected = example
        if not is_valid_vector(inputs, input_size):
            return False
        if not is_valid_vector(expected, output_size):
            return False

    return True
