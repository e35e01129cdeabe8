"""Greedy transducer decoding.

Single-hypothesis special case of the beam search: on every frame the
arg-max label is emitted and the same frame is scored again with the
updated decoder output, until blank moves decoding to the next frame.
"""

import logging
from typing import List

import torch

from transducer_decoder.beam_search.beam_search import TransducerSearch
from transducer_decoder.beam_search.hypothesis import (
    Hypothesis,
    append_label,
    create_initial_hypothesis,
)
from transducer_decoder.beam_search.scorers import ScorerInterface
from transducer_decoder.errors import ExpansionOverflow

logger = logging.getLogger(__name__)


class GreedySearch(TransducerSearch):
    """Arg-max transducer decoding.

    Args:
        scorer: Scorer wrapping the transducer network
        max_decode_steps: Label emissions allowed per utterance (default: 2000)
        length_norm: Normalization applied to the final score
    """

    def __init__(
        self,
        scorer: ScorerInterface,
        max_decode_steps: int = 2000,
        length_norm: str = "labels",
    ):
        super().__init__(scorer, length_norm=length_norm)
        if max_decode_steps < 0:
            raise ValueError(f"max_decode_steps must be non-negative, got {max_decode_steps}")
        self.max_decode_steps = max_decode_steps

    def search(self, encoder_out: torch.Tensor) -> List[Hypothesis]:
        """Decode one utterance.

        Args:
            encoder_out: Encoder output, one entry per frame along dim 0

        Returns:
            Single-element list with the decoded hypothesis

        Raises:
            ExpansionOverflow: More than ``max_decode_steps`` labels would be
                emitted; carries the hypothesis decoded so far
        """
        self.check_encoder_out(encoder_out)

        hyp = create_initial_hypothesis()

        for t in range(encoder_out.size(0)):
            encoder_frame = encoder_out[t]

            while True:
                log_probs = self.score(encoder_frame, hyp)
                # topk instead of argmax so ties resolve like the beam search
                top_log_prob, top_id = torch.topk(log_probs, 1)
                label = top_id.item()
                new_score = hyp.score + top_log_prob.item()

                if label == self.blank_id:
                    hyp.score = new_score
                    break

                if hyp.length >= self.max_decode_steps:
                    logger.warning(
                        f"Greedy search hit max_decode_steps={self.max_decode_steps} at frame {t}"
                    )
                    raise ExpansionOverflow(
                        f"More than {self.max_decode_steps} labels emitted",
                        hypotheses=self.finalize([hyp]),
                        frame=t,
                    )

                hyp = append_label(hyp, label, new_score)

            logger.debug(f"Frame {t}: {hyp}")

        return self.finalize([hyp])
