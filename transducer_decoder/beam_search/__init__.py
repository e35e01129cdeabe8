"""Search modules for transducer decoding."""

from transducer_decoder.beam_search.beam_search import (
    TransducerBeamSearch,
    TransducerSearch,
    create_beam_search,
    normalize_score,
)
from transducer_decoder.beam_search.greedy_search import GreedySearch
from transducer_decoder.beam_search.hypothesis import (
    Hypothesis,
    HypothesisList,
    create_initial_hypothesis,
    log_add,
)
from transducer_decoder.beam_search.scorers import (
    ScorerInterface,
    StaticScorer,
    TransducerScorer,
)

__all__ = [
    "TransducerBeamSearch",
    "TransducerSearch",
    "create_beam_search",
    "normalize_score",
    "GreedySearch",
    "Hypothesis",
    "HypothesisList",
    "create_initial_hypothesis",
    "log_add",
    "ScorerInterface",
    "StaticScorer",
    "TransducerScorer",
]
