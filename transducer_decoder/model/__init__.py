"""Model modules for transducer_decoder."""

from transducer_decoder.model.transducer import (
    TransducerEncoder,
    TransducerJoiner,
    TransducerModel,
    TransducerPredictor,
)

__all__ = [
    "TransducerEncoder",
    "TransducerJoiner",
    "TransducerModel",
    "TransducerPredictor",
]
