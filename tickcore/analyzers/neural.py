"""Fixed-weight feed-forward digit scorer.

An untrained three-layer network: input -> sigmoid -> sigmoid -> sigmoid ->
softmax. Weights are drawn uniformly from [-1, 1] by a seeded generator, so
the same seed always yields the same scores. It is a deterministic
heuristic, not a learning system; ``jitter`` applies optional seeded random
nudges to the output layer.
"""

from __future__ import annotations

from typing import Protocol, Sequence

import numpy as np

INPUT_SIZE = 20
HIDDEN_SIZE = 15
OUTPUT_SIZE = 10


class DigitScorer(Protocol):
    """Anything that maps recent digits to a probability per next digit."""

    def predict(self, digits: Sequence[int]) -> np.ndarray:
        ...


def sigmoid(x: np.ndarray) -> np.ndarray:
    return 1.0 / (1.0 + np.exp(-x))


def softmax(values: np.ndarray) -> np.ndarray:
    exp = np.exp(values - values.max())
    return exp / exp.sum()


class HeuristicNetwork:
    """Seeded 20-15-15-10 forward pass."""

    def __init__(
        self,
        seed: int = 0,
        input_size: int = INPUT_SIZE,
        hidden_size: int = HIDDEN_SIZE,
        output_size: int = OUTPUT_SIZE,
    ):
        self.input_size = input_size
        self._rng = np.random.default_rng(seed)
        self.input_layer = self._rng.uniform(-1.0, 1.0, (input_size, hidden_size))
        self.hidden_layer = self._rng.uniform(-1.0, 1.0, (hidden_size, hidden_size))
        self.output_layer = self._rng.uniform(-1.0, 1.0, (hidden_size, output_size))

    def forward(self, inputs: np.ndarray) -> np.ndarray:
        hidden1 = sigmoid(inputs @ self.input_layer)
        hidden2 = sigmoid(hidden1 @ self.hidden_layer)
        output = sigmoid(hidden2 @ self.output_layer)
        return softmax(output)

    def predict(self, digits: Sequence[int]) -> np.ndarray:
        """Score the last ``input_size`` digits, each normalized by 9."""
        if len(digits) < self.input_size:
            raise ValueError(f"Need {self.input_size} digits, got {len(digits)}")
        inputs = np.asarray(digits[-self.input_size :], dtype=np.float64) / 9.0
        return self.forward(inputs)

    def jitter(self, digits: Sequence[int], learning_rate: float = 0.01, samples: int = 20) -> None:
        """Nudge output weights in proportion to recent prediction error."""
        if len(digits) < self.input_size + 1:
            return
        start = max(self.input_size, len(digits) - 1 - samples)
        for i in range(start, len(digits) - 1):
            window = digits[i - self.input_size : i]
            error = digits[i] - int(np.argmax(self.predict(window)))
            scale = learning_rate * abs(error)
            if scale:
                self.output_layer += (self._rng.random(self.output_layer.shape) - 0.5) * scale
