"""Scorer modules for transducer search."""

import logging
from abc import ABC, abstractmethod
from typing import Sequence

import torch

from transducer_decoder.errors import InvalidInput, ScoringFailure
from transducer_decoder.model import TransducerModel

logger = logging.getLogger(__name__)


class ScorerInterface(ABC):
    """Oracle interface between the search and a transducer network.

    Implementations must be pure for a given input: ``decoder_step`` returns
    the same output for the same prefix, and ``joint`` keeps no state across
    calls. The search tracks which prefix a cached decoder output belongs to.
    """

    def __init__(self, vocab_size: int):
        if vocab_size < 2:
            raise ValueError(f"vocab_size must include blank and one label, got {vocab_size}")
        self.vocab_size = vocab_size
        self.num_decoder_calls = 0

    @property
    def blank_id(self) -> int:
        """Blank is always the last vocabulary entry."""
        return self.vocab_size - 1

    @abstractmethod
    def encode(self, frames: torch.Tensor) -> torch.Tensor:
        """Encode a whole utterance.

        Args:
            frames: Input frames for one utterance

        Returns:
            Encoder output with one entry per frame along dim 0
        """
        pass

    @abstractmethod
    def decoder_step(self, labels: Sequence[int], up_to: int) -> torch.Tensor:
        """Decoder output for the prefix ``labels[:up_to]``.

        Args:
            labels: Label history (blank excluded)
            up_to: Prefix length to condition on

        Returns:
            Decoder output tensor
        """
        pass

    @abstractmethod
    def joint(self, encoder_frame: torch.Tensor, decoder_out: torch.Tensor) -> torch.Tensor:
        """Log probabilities (vocab_size,) for one frame and one decoder output."""
        pass


def validate_log_probs(log_probs: torch.Tensor, vocab_size: int) -> torch.Tensor:
    """Check a joint output before the search consumes it.

    ``-inf`` entries are legal (zero probability); NaN and ``+inf`` are not,
    and neither is a distribution without any finite entry.

    Raises:
        InvalidInput: Output size does not match the vocabulary
        ScoringFailure: Output contains unusable values
    """
    if log_probs.dim() != 1 or log_probs.size(0) != vocab_size:
        raise InvalidInput(
            f"Scorer returned shape {tuple(log_probs.shape)}, expected ({vocab_size},)"
        )
    if torch.isnan(log_probs).any() or torch.isposinf(log_probs).any():
        raise ScoringFailure("Scorer returned NaN or +inf log probabilities")
    if not torch.isfinite(log_probs).any():
        raise ScoringFailure("Scorer returned no finite log probability")
    return log_probs


class TransducerScorer(ScorerInterface):
    """Scorer backed by a ``TransducerModel``.

    Args:
        model: Transducer network (encoder, predictor, joiner)
        device: Device to run the network on
    """

    def __init__(self, model: TransducerModel, device: str = "cpu"):
        super().__init__(model.vocab_size)
        self.model = model
        self.device = device

    def encode(self, frames: torch.Tensor) -> torch.Tensor:
        """Encode features (time, input_size) or (1, time, input_size)."""
        if not isinstance(frames, torch.Tensor):
            raise InvalidInput(f"Expected a torch.Tensor, got {type(frames).__name__}")
        if frames.dim() == 3 and frames.size(0) == 1:
            frames = frames[0]
        if frames.dim() != 2:
            raise InvalidInput(f"Expected (time, feat_dim) features, got shape {tuple(frames.shape)}")
        if frames.size(0) == 0:
            raise InvalidInput("Empty utterance")
        if frames.size(1) != self.model.input_size:
            raise InvalidInput(
                f"Feature dimension {frames.size(1)} does not match model input size {self.model.input_size}"
            )

        try:
            with torch.no_grad():
                encoder_out, _ = self.model.encode(frames.unsqueeze(0).to(self.device))
        except RuntimeError as e:
            raise ScoringFailure(f"Encoder forward failed: {e}") from e

        logger.debug(f"Encoded {frames.size(0)} frames -> {tuple(encoder_out.shape)}")
        return encoder_out[0]

    def decoder_step(self, labels: Sequence[int], up_to: int) -> torch.Tensor:
        ys = torch.tensor([list(labels[:up_to])], dtype=torch.long, device=self.device)
        try:
            with torch.no_grad():
                predictor_out = self.model.predictor(ys)
        except (RuntimeError, IndexError) as e:
            raise ScoringFailure(f"Predictor forward failed: {e}") from e

        self.num_decoder_calls += 1
        return predictor_out[0, -1]

    def joint(self, encoder_frame: torch.Tensor, decoder_out: torch.Tensor) -> torch.Tensor:
        try:
            with torch.no_grad():
                return self.model.joiner(encoder_frame, decoder_out)
        except RuntimeError as e:
            raise ScoringFailure(f"Joiner forward failed: {e}") from e


class StaticScorer(ScorerInterface):
    """Scorer over a precomputed (T, U, V) log-probability lattice.

    Entry ``[t, u]`` is the joint distribution at frame ``t`` after ``u``
    emitted labels; label positions beyond ``U - 1`` reuse the last row.
    The "encoder output" is the lattice itself and the "decoder output" is
    the label position, so the scores depend on the number of emitted labels
    but not on their identity.

    Args:
        vocab_size: Vocabulary size (blank is the last entry)
    """

    def encode(self, frames: torch.Tensor) -> torch.Tensor:
        if not isinstance(frames, torch.Tensor) or frames.dim() != 3:
            raise InvalidInput("Expected a (time, label_positions, vocab_size) lattice")
        if frames.size(0) == 0 or frames.size(1) == 0:
            raise InvalidInput("Empty utterance")
        if frames.size(2) != self.vocab_size:
            raise InvalidInput(
                f"Lattice vocabulary size {frames.size(2)} does not match {self.vocab_size}"
            )
        return frames

    def decoder_step(self, labels: Sequence[int], up_to: int) -> torch.Tensor:
        self.num_decoder_calls += 1
        return torch.tensor(up_to, dtype=torch.long)

    def joint(self, encoder_frame: torch.Tensor, decoder_out: torch.Tensor) -> torch.Tensor:
        position = min(int(decoder_out), encoder_frame.size(0) - 1)
        return encoder_frame[position]
