"""Frame-synchronous beam search for transducer models.

For every encoder frame the search repeatedly pops the best active
hypothesis, scores it against the frame, and either completes it for the
frame (blank) or extends it by a label that is expanded again on the same
frame. Completed hypotheses with the same label history are merged with
log-sum-exp; after each frame only the ``beam_size`` best survive.
"""

import logging
import math
from typing import List

import torch

from transducer_decoder.beam_search.hypothesis import (
    Hypothesis,
    HypothesisList,
    append_label,
    create_initial_hypothesis,
    top_k_hypotheses,
)
from transducer_decoder.beam_search.scorers import ScorerInterface, validate_log_probs
from transducer_decoder.errors import ExpansionOverflow, InvalidInput

logger = logging.getLogger(__name__)

LENGTH_NORM_MODES = ("labels", "labels_with_blank", "none")


def normalize_score(hyp: Hypothesis, length_norm: str = "labels") -> float:
    """Length-normalize a cumulative score.

    Args:
        hyp: Hypothesis to normalize
        length_norm: "labels" divides by the number of emitted labels,
            "labels_with_blank" also counts the leading blank start symbol,
            "none" returns the raw score

    Returns:
        Normalized score; a zero divisor is treated as 1
    """
    if length_norm == "none":
        return hyp.score
    if length_norm == "labels":
        divisor = hyp.length
    elif length_norm == "labels_with_blank":
        divisor = hyp.length + 1
    else:
        raise ValueError(f"Unknown length_norm '{length_norm}', expected one of {LENGTH_NORM_MODES}")
    return hyp.score / max(divisor, 1)


class TransducerSearch:
    """Shared scoring and finalization for transducer searches.

    Args:
        scorer: Scorer wrapping the transducer network
        length_norm: Normalization applied to final scores
    """

    def __init__(self, scorer: ScorerInterface, length_norm: str = "labels"):
        if length_norm not in LENGTH_NORM_MODES:
            raise ValueError(f"Unknown length_norm '{length_norm}', expected one of {LENGTH_NORM_MODES}")
        self.scorer = scorer
        self.length_norm = length_norm

    @property
    def vocab_size(self) -> int:
        return self.scorer.vocab_size

    @property
    def blank_id(self) -> int:
        return self.scorer.blank_id

    def update_decoder_out(self, hyp: Hypothesis) -> torch.Tensor:
        """Make ``hyp.decoder_out`` current for its label history.

        The decoder is only evaluated when the prefix grew since the last
        evaluation.
        """
        if hyp.needs_decoder_update:
            hyp.decoder_out = self.scorer.decoder_step(hyp.labels, hyp.length)
            hyp.processed_length = hyp.length
        return hyp.decoder_out

    def score(self, encoder_frame: torch.Tensor, hyp: Hypothesis) -> torch.Tensor:
        """Log probabilities over the vocabulary for ``hyp`` at one frame."""
        decoder_out = self.update_decoder_out(hyp)
        log_probs = self.scorer.joint(encoder_frame, decoder_out)
        return validate_log_probs(log_probs, self.vocab_size)

    def finalize(self, hypotheses: List[Hypothesis]) -> List[Hypothesis]:
        """Normalize scores and sort by normalized score (best first)."""
        for hyp in hypotheses:
            hyp.normalized_score = normalize_score(hyp, self.length_norm)
        return sorted(hypotheses, key=lambda h: h.normalized_score, reverse=True)

    def check_encoder_out(self, encoder_out: torch.Tensor) -> None:
        if encoder_out.dim() < 1 or encoder_out.size(0) == 0:
            raise InvalidInput("Encoder produced no frames")

    def search(self, encoder_out: torch.Tensor) -> List[Hypothesis]:
        raise NotImplementedError

    def __call__(self, encoder_out: torch.Tensor) -> List[Hypothesis]:
        return self.search(encoder_out)


class TransducerBeamSearch(TransducerSearch):
    """Best-first, frame-synchronous transducer beam search.

    Args:
        scorer: Scorer wrapping the transducer network
        beam_size: Hypotheses retained after each frame (default: 10)
        expand_beam: Candidates explored per popped hypothesis (default: 20)
        max_expansions_per_frame: Pops allowed per frame before giving up
        length_norm: Normalization applied to final scores
    """

    def __init__(
        self,
        scorer: ScorerInterface,
        beam_size: int = 10,
        expand_beam: int = 20,
        max_expansions_per_frame: int = 2000,
        length_norm: str = "labels",
    ):
        super().__init__(scorer, length_norm=length_norm)
        if beam_size < 1:
            raise ValueError(f"beam_size must be positive, got {beam_size}")
        if expand_beam < 1:
            raise ValueError(f"expand_beam must be positive, got {expand_beam}")
        if max_expansions_per_frame < 1:
            raise ValueError(f"max_expansions_per_frame must be positive, got {max_expansions_per_frame}")

        self.beam_size = beam_size
        self.expand_beam = min(expand_beam, scorer.vocab_size)
        self.max_expansions_per_frame = max_expansions_per_frame

    def search(self, encoder_out: torch.Tensor) -> List[Hypothesis]:
        """Decode one utterance.

        Args:
            encoder_out: Encoder output, one entry per frame along dim 0

        Returns:
            Surviving hypotheses sorted by normalized score (N-best list)

        Raises:
            ExpansionOverflow: A frame needed more than
                ``max_expansions_per_frame`` pops; carries the best
                hypotheses found so far
        """
        self.check_encoder_out(encoder_out)

        beam = [create_initial_hypothesis()]

        for t in range(encoder_out.size(0)):
            beam = self.search_frame(encoder_out[t], beam, t)
            logger.debug(f"Frame {t}: {len(beam)} hypotheses, best={beam[0] if beam else None}")

        return self.finalize(beam)

    def search_frame(
        self,
        encoder_frame: torch.Tensor,
        hypotheses: List[Hypothesis],
        t: int = 0,
    ) -> List[Hypothesis]:
        """Expand hypotheses on one frame and prune to ``beam_size``.

        Args:
            encoder_frame: Encoder output for this frame
            hypotheses: Survivors of the previous frame
            t: Frame index (for logging)

        Returns:
            At most ``beam_size`` hypotheses with distinct label histories,
            sorted by score
        """
        cur_hyps = list(hypotheses)
        next_hyps = HypothesisList()
        num_expansions = 0

        while cur_hyps:
            if num_expansions >= self.max_expansions_per_frame:
                raise ExpansionOverflow(
                    f"Frame {t}: no stable beam after {num_expansions} expansions",
                    hypotheses=self._best_so_far(next_hyps, cur_hyps),
                    frame=t,
                )

            best_idx = max(range(len(cur_hyps)), key=lambda i: cur_hyps[i].score)
            hyp = cur_hyps.pop(best_idx)
            num_expansions += 1

            log_probs = self.score(encoder_frame, hyp)
            top_log_probs, top_ids = torch.topk(log_probs, self.expand_beam)

            for log_prob, label in zip(top_log_probs.tolist(), top_ids.tolist()):
                if log_prob == -math.inf:
                    continue
                new_score = hyp.score + log_prob
                if label == self.blank_id:
                    next_hyps.add(hyp.with_score(new_score))
                else:
                    cur_hyps.append(append_label(hyp, label, new_score))

            if not cur_hyps:
                break

            # Stop once enough hypotheses are complete and none of the
            # active ones can beat the best completed one.
            best_next = next_hyps.get_most_probable()
            if len(next_hyps) > self.beam_size and best_next.score > max(h.score for h in cur_hyps):
                break

        logger.debug(f"Frame {t}: {num_expansions} expansions, completed: {next_hyps}")
        return next_hyps.topk(self.beam_size).sorted()

    def _best_so_far(
        self,
        next_hyps: HypothesisList,
        cur_hyps: List[Hypothesis],
    ) -> List[Hypothesis]:
        if len(next_hyps) > 0:
            candidates = list(next_hyps)
        else:
            merged = HypothesisList()
            for hyp in cur_hyps:
                merged.add(hyp.with_score(hyp.score))
            candidates = list(merged)
        return self.finalize(top_k_hypotheses(candidates, self.beam_size))


def create_beam_search(
    scorer: ScorerInterface,
    search_type: str = "beam",
    beam_size: int = 10,
    expand_beam: int = 20,
    max_decode_steps: int = 2000,
    max_expansions_per_frame: int = 2000,
    length_norm: str = "labels",
) -> TransducerSearch:
    """Create a transducer search.

    Args:
        scorer: Scorer wrapping the transducer network
        search_type: "beam" or "greedy"
        beam_size: Beam size (beam search only)
        expand_beam: Candidates per expansion step (beam search only)
        max_decode_steps: Label emissions allowed per utterance (greedy only)
        max_expansions_per_frame: Pops allowed per frame (beam search only)
        length_norm: Normalization applied to final scores

    Returns:
        Search instance
    """
    from transducer_decoder.beam_search.greedy_search import GreedySearch

    if search_type == "greedy":
        logger.info(f"Creating greedy search with max_decode_steps={max_decode_steps}")
        return GreedySearch(scorer, max_decode_steps=max_decode_steps, length_norm=length_norm)
    if search_type == "beam":
        logger.info(f"Creating beam search with beam_size={beam_size}, expand_beam={expand_beam}")
        return TransducerBeamSearch(
            scorer,
            beam_size=beam_size,
            expand_beam=expand_beam,
            max_expansions_per_frame=max_expansions_per_frame,
            length_norm=length_norm,
        )
    raise ValueError(f"Unknown search_type '{search_type}', expected 'beam' or 'greedy'")
