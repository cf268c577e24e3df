"""Score post-processing: probability distribution and top-K ranking."""

import logging
from typing import List, Sequence, Tuple

import numpy as np

from .model_runtime import LabelOutput, ModelOutput, ScoresOutput

logger = logging.getLogger(__name__)

# (label, probability, label index); index is -1 for a bare label output
RankedLabel = Tuple[str, float, int]


def softmax(scores: np.ndarray) -> np.ndarray:
    """Compute a numerically stable softmax over a 1-D score vector.

    Args:
        scores: Raw logits

    Returns:
        Probabilities summing to 1.0

    Raises:
        ValueError: If the vector is empty or contains non-finite values
    """
    x = np.asarray(scores, dtype=np.float64).reshape(-1)
    if x.size == 0:
        raise ValueError("Score vector is empty")
    if not np.all(np.isfinite(x)):
        raise ValueError("Score vector contains non-finite values")

    e_x = np.exp(x - np.max(x))
    return e_x / e_x.sum()


def renormalize(scores: np.ndarray) -> np.ndarray:
    """Rescale confidences that are already a distribution so they sum to 1.

    Negative entries are clipped to zero. An all-zero vector becomes uniform.
    """
    x = np.asarray(scores, dtype=np.float64).reshape(-1)
    if x.size == 0:
        raise ValueError("Score vector is empty")
    if not np.all(np.isfinite(x)):
        raise ValueError("Score vector contains non-finite values")

    x = np.clip(x, 0.0, None)
    total = x.sum()
    if total <= 0:
        return np.full_like(x, 1.0 / x.size)
    return x / total


def rank_indices(probs: np.ndarray, k: int) -> List[int]:
    """Return the indices of the k highest probabilities.

    Sorting is stable, so exact ties keep their original index order.
    """
    if k < 1:
        raise ValueError("k must be at least 1, got %d" % k)
    order = np.argsort(-np.asarray(probs), kind="stable")
    return [int(i) for i in order[:k]]


def rank_output(
    output: ModelOutput,
    labels: Sequence[str],
    k: int = 1,
    scores_are_probabilities: bool = False,
) -> List[RankedLabel]:
    """Turn a model output into ranked (label, probability, index) triples.

    Args:
        output: LabelOutput or ScoresOutput from the model runtime
        labels: Class labels, index-aligned with the score vector
        k: Number of predictions to return (clamped to the class count)
        scores_are_probabilities: Renormalize instead of applying softmax

    Returns:
        Predictions ordered by descending probability

    Raises:
        ValueError: If the score vector does not match the label count
    """
    if isinstance(output, LabelOutput):
        # Bare label with no score: fixed confidence, single prediction
        return [(output.label, 1.0, -1)]

    if not isinstance(output, ScoresOutput):
        raise TypeError("Unsupported model output: %r" % (output,))

    scores = np.asarray(output.scores).reshape(-1)
    if scores.size != len(labels):
        raise ValueError(
            "Score vector length %d does not match label count %d"
            % (scores.size, len(labels)))

    probs = renormalize(scores) if scores_are_probabilities else softmax(scores)
    top = rank_indices(probs, min(k, probs.size))
    return [(labels[i], float(probs[i]), i) for i in top]
