"""Hypothesis and hypothesis-list classes for transducer search."""

import math
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Tuple

import torch


@dataclass
class Hypothesis:
    """Single hypothesis in transducer beam search.

    The label history never contains blank. The decoder is conditioned on an
    implicit leading blank, so the initial hypothesis has ``labels == []``.

    Attributes:
        labels: Emitted label ids (blank excluded)
        score: Cumulative log probability (not length normalized)
        decoder_out: Cached decoder output for ``labels[:processed_length]``
        processed_length: Prefix length ``decoder_out`` was computed for
            (-1 when nothing has been computed yet)
        normalized_score: Length-normalized score, set once search is done
    """

    labels: List[int] = field(default_factory=list)
    score: float = 0.0
    decoder_out: Optional[torch.Tensor] = None
    processed_length: int = -1
    normalized_score: Optional[float] = None

    @property
    def length(self) -> int:
        """Number of real (non-blank) labels emitted."""
        return len(self.labels)

    @property
    def key(self) -> Tuple[int, ...]:
        """Hashable label history; equal keys mean equivalent hypotheses."""
        return tuple(self.labels)

    @property
    def needs_decoder_update(self) -> bool:
        return self.decoder_out is None or self.processed_length != self.length

    def with_score(self, score: float) -> "Hypothesis":
        """Copy with a new score and the same label history.

        The decoder output tensor is shared, never modified in place.
        """
        return Hypothesis(
            labels=list(self.labels),
            score=score,
            decoder_out=self.decoder_out,
            processed_length=self.processed_length,
        )

    def __repr__(self) -> str:
        labels_str = str(self.labels[:10]) + ("..." if len(self.labels) > 10 else "")
        return f"Hypothesis(labels={labels_str}, score={self.score:.2f})"


def create_initial_hypothesis() -> Hypothesis:
    """Create the blank-only hypothesis every utterance starts from."""
    return Hypothesis(labels=[], score=0.0)


def append_label(hyp: Hypothesis, label: int, score: float) -> Hypothesis:
    """Extend a hypothesis by one label.

    The returned hypothesis keeps the parent's (now stale) decoder cache;
    ``processed_length`` tells the search it has to be recomputed.

    Args:
        hyp: Hypothesis to extend
        label: Label id to append (must not be blank)
        score: Cumulative score of the extended hypothesis

    Returns:
        New hypothesis
    """
    return Hypothesis(
        labels=hyp.labels + [label],
        score=score,
        decoder_out=hyp.decoder_out,
        processed_length=hyp.processed_length,
    )


def log_add(a: float, b: float) -> float:
    """Numerically stable ``log(exp(a) + exp(b))``."""
    if a == -math.inf:
        return b
    if b == -math.inf:
        return a
    return max(a, b) + math.log1p(math.exp(-abs(a - b)))


def top_k_hypotheses(hypotheses: List[Hypothesis], k: int) -> List[Hypothesis]:
    """Select top-k hypotheses by score.

    Args:
        hypotheses: List of hypotheses
        k: Number of hypotheses to keep

    Returns:
        Top-k hypotheses sorted by score (descending)
    """
    return sorted(hypotheses, key=lambda h: h.score, reverse=True)[:k]


class HypothesisList:
    """Set of hypotheses keyed by label history.

    Adding a hypothesis whose labels are already present merges the two
    scores with log-sum-exp instead of storing a duplicate.
    """

    def __init__(self, data: Optional[Dict[Tuple[int, ...], Hypothesis]] = None):
        self._data = data if data is not None else {}

    def add(self, hyp: Hypothesis) -> None:
        if hyp.key in self:
            old_hyp = self._data[hyp.key]
            old_hyp.score = log_add(old_hyp.score, hyp.score)
        else:
            self._data[hyp.key] = hyp

    def get_most_probable(self) -> Optional[Hypothesis]:
        """Return the hypothesis with the largest score, or None if empty."""
        if not self._data:
            return None
        return max(self._data.values(), key=lambda hyp: hyp.score)

    def topk(self, k: int) -> "HypothesisList":
        """Return a new list holding the top-k hypotheses by score."""
        hyps = top_k_hypotheses(list(self._data.values()), k)
        return HypothesisList({hyp.key: hyp for hyp in hyps})

    def sorted(self) -> List[Hypothesis]:
        return top_k_hypotheses(list(self._data.values()), len(self._data))

    def __contains__(self, key: Tuple[int, ...]) -> bool:
        return key in self._data

    def __iter__(self) -> Iterator[Hypothesis]:
        return iter(self._data.values())

    def __len__(self) -> int:
        return len(self._data)

    def __str__(self) -> str:
        return ", ".join(f"{list(hyp.labels)}:{hyp.score:.3f}" for hyp in self)
