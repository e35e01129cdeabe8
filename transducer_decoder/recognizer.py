"""Utterance-level recognition API for transducer models."""

import logging
from dataclasses import dataclass, field, fields
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

import numpy as np
import torch

from transducer_decoder.beam_search import (
    Hypothesis,
    ScorerInterface,
    TransducerScorer,
    create_beam_search,
)
from transducer_decoder.beam_search.beam_search import LENGTH_NORM_MODES
from transducer_decoder.errors import ExpansionOverflow, InvalidInput, ScoringFailure
from transducer_decoder.model import TransducerModel
from transducer_decoder.model.checkpoint_loader import apply_feature_normalization

logger = logging.getLogger(__name__)


@dataclass
class DecodingConfig:
    """Decoding options.

    Attributes:
        beam_size: Hypotheses retained per frame
        expand_beam: Candidates explored per hypothesis per expansion step
        max_decode_steps: Label emissions allowed per utterance (greedy)
        max_expansions_per_frame: Pops allowed per frame (beam search)
        length_norm: "labels", "labels_with_blank" or "none"
        nbest: Number of hypotheses kept in the result
        search_type: "beam" or "greedy"
    """

    beam_size: int = 10
    expand_beam: int = 20
    max_decode_steps: int = 2000
    max_expansions_per_frame: int = 2000
    length_norm: str = "labels"
    nbest: int = 1
    search_type: str = "beam"

    def __post_init__(self):
        if self.search_type not in ("beam", "greedy"):
            raise ValueError(f"Unknown search_type '{self.search_type}'")
        if self.length_norm not in LENGTH_NORM_MODES:
            raise ValueError(f"Unknown length_norm '{self.length_norm}'")
        if self.nbest < 1:
            raise ValueError(f"nbest must be positive, got {self.nbest}")
        if self.beam_size < 1 or self.expand_beam < 1:
            raise ValueError(
                f"beam_size and expand_beam must be positive, got {self.beam_size} and {self.expand_beam}"
            )
        if self.max_expansions_per_frame < 1:
            raise ValueError(
                f"max_expansions_per_frame must be positive, got {self.max_expansions_per_frame}"
            )
        if self.max_decode_steps < 0:
            raise ValueError(f"max_decode_steps must be non-negative, got {self.max_decode_steps}")

    @classmethod
    def from_dict(cls, config: Dict) -> "DecodingConfig":
        """Build from a dict (e.g. a parsed YAML file), rejecting unknown keys."""
        known = {f.name for f in fields(cls)}
        unknown = set(config) - known
        if unknown:
            raise ValueError(f"Unknown decoding options: {sorted(unknown)}")
        return cls(**config)


@dataclass
class DecodingResult:
    """Decoding output for one utterance.

    Attributes:
        labels: Best label sequence; a single blank when nothing was emitted
        frame_count: Number of output columns (``len(labels)``)
        score: Normalized score of the best hypothesis
        num_frames: Number of encoder frames decoded
        nbest: Best hypotheses, best first
        truncated: Decoding stopped at a safety bound
    """

    labels: List[int]
    frame_count: int
    score: float
    num_frames: int
    nbest: List[Hypothesis] = field(default_factory=list)
    truncated: bool = False

    def one_hot(self, vocab_size: int) -> torch.Tensor:
        """Labels as a (vocab_size, frame_count) matrix of one-hot columns."""
        matrix = torch.zeros(vocab_size, self.frame_count)
        matrix[torch.tensor(self.labels, dtype=torch.long), torch.arange(self.frame_count)] = 1.0
        return matrix


def output_labels(hyp: Hypothesis, blank_id: int) -> List[int]:
    """Labels to write for ``hyp``; never empty."""
    return list(hyp.labels) if hyp.labels else [blank_id]


class TransducerRecognizer:
    """Decode utterances with greedy or beam search.

    Args:
        scorer: Scorer wrapping the transducer network
        config: Decoding options (defaults if None)
        feature_stats: Optional (mean, std) applied to features before encoding
    """

    def __init__(
        self,
        scorer: ScorerInterface,
        config: Optional[DecodingConfig] = None,
        feature_stats: Optional[Tuple[np.ndarray, np.ndarray]] = None,
    ):
        self.scorer = scorer
        self.config = config if config is not None else DecodingConfig()
        self.feature_stats = feature_stats
        self.search = create_beam_search(
            scorer,
            search_type=self.config.search_type,
            beam_size=self.config.beam_size,
            expand_beam=self.config.expand_beam,
            max_decode_steps=self.config.max_decode_steps,
            max_expansions_per_frame=self.config.max_expansions_per_frame,
            length_norm=self.config.length_norm,
        )
        self.num_decoded = 0
        self.num_failed = 0

    @property
    def blank_id(self) -> int:
        return self.scorer.blank_id

    def __call__(self, features: torch.Tensor) -> DecodingResult:
        """Decode one utterance.

        Args:
            features: Input accepted by the scorer's ``encode``

        Returns:
            Decoding result

        Raises:
            InvalidInput: Malformed utterance
            ScoringFailure: The network failed or produced unusable scores
        """
        if self.feature_stats is not None:
            features = apply_feature_normalization(features, *self.feature_stats)

        encoder_out = self.scorer.encode(features)
        num_frames = encoder_out.size(0)

        truncated = False
        try:
            hypotheses = self.search(encoder_out)
        except ExpansionOverflow as e:
            logger.warning(f"{e}; emitting best hypothesis found so far")
            hypotheses = e.hypotheses
            truncated = True

        if not hypotheses:
            raise ScoringFailure("Search finished without any hypothesis")

        return self.make_result(hypotheses, num_frames, truncated)

    def make_result(
        self,
        hypotheses: List[Hypothesis],
        num_frames: int,
        truncated: bool = False,
    ) -> DecodingResult:
        best = hypotheses[0]
        labels = output_labels(best, self.blank_id)
        return DecodingResult(
            labels=labels,
            frame_count=len(labels),
            score=best.normalized_score if best.normalized_score is not None else best.score,
            num_frames=num_frames,
            nbest=hypotheses[: self.config.nbest],
            truncated=truncated,
        )

    def decode_utterances(
        self,
        utterances: Iterable[Tuple[str, torch.Tensor]],
    ) -> Iterator[Tuple[str, DecodingResult]]:
        """Decode utterances one after another.

        A failing utterance is logged and skipped; decoding continues with
        the next one.

        Args:
            utterances: Iterable of (utterance id, features)

        Yields:
            (utterance id, result) for every successfully decoded utterance
        """
        for utt_id, features in utterances:
            try:
                result = self(features)
            except (InvalidInput, ScoringFailure) as e:
                self.num_failed += 1
                logger.error(f"Skipping utterance {utt_id}: {e}")
                continue

            self.num_decoded += 1
            logger.debug(f"{utt_id}: {result.labels} (score={result.score:.4f})")
            yield utt_id, result


def create_recognizer(
    model: TransducerModel,
    config: Optional[DecodingConfig] = None,
    device: str = "cpu",
    feature_stats: Optional[Tuple[np.ndarray, np.ndarray]] = None,
) -> TransducerRecognizer:
    """Create a recognizer for a transducer model.

    Args:
        model: Transducer model (moved to ``device`` and put in eval mode)
        config: Decoding options
        device: Device to run on
        feature_stats: Optional (mean, std) feature normalization

    Returns:
        TransducerRecognizer instance
    """
    model = model.to(device)
    model.eval()
    return TransducerRecognizer(TransducerScorer(model, device=device), config, feature_stats)
