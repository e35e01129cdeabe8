"""Exceptions raised while decoding a single utterance."""

from typing import List, Optional


class DecodingError(Exception):
    """Base class for all per-utterance decoding failures."""


class InvalidInput(DecodingError, ValueError):
    """Malformed utterance or inconsistent scorer output.

    Raised for empty utterances, feature dimension mismatches and
    vocabulary-size mismatches between scorer outputs.
    """


class ScoringFailure(DecodingError, RuntimeError):
    """The network forward pass failed or returned non-finite scores."""


class ExpansionOverflow(DecodingError):
    """The per-frame expansion loop exceeded its iteration cap.

    Args:
        message: Error message
        hypotheses: Best hypotheses found before the cap was hit
        frame: Encoder frame index at which the cap was hit
    """

    def __init__(self, message: str, hypotheses: Optional[List] = None, frame: int = -1):
        super().__init__(message)
        self.hypotheses = hypotheses if hypotheses is not None else []
        self.frame = frame
