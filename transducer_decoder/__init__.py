"""Streaming transducer decoding: greedy and beam search."""

from transducer_decoder.errors import (
    DecodingError,
    ExpansionOverflow,
    InvalidInput,
    ScoringFailure,
)
from transducer_decoder.recognizer import (
    DecodingConfig,
    DecodingResult,
    TransducerRecognizer,
    create_recognizer,
)

__all__ = [
    "DecodingError",
    "ExpansionOverflow",
    "InvalidInput",
    "ScoringFailure",
    "DecodingConfig",
    "DecodingResult",
    "TransducerRecognizer",
    "create_recognizer",
]
