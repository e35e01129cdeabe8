"""Unit tests for hypotheses and hypothesis lists."""

import math

import pytest
import torch

from transducer_decoder.beam_search.hypothesis import (
    Hypothesis,
    HypothesisList,
    append_label,
    create_initial_hypothesis,
    log_add,
    top_k_hypotheses,
)


class TestHypothesis:
    """Tests for the Hypothesis dataclass."""

    def test_initial_hypothesis(self):
        hyp = create_initial_hypothesis()

        assert hyp.labels == []
        assert hyp.score == 0.0
        assert hyp.length == 0
        assert hyp.decoder_out is None
        assert hyp.needs_decoder_update

    def test_append_label_does_not_modify_parent(self):
        parent = Hypothesis(labels=[1], score=-0.5, decoder_out=torch.zeros(4), processed_length=1)

        child = append_label(parent, 3, -1.5)

        assert parent.labels == [1]
        assert child.labels == [1, 3]
        assert child.score == -1.5
        assert child.length == 2
        # Cache belongs to the shorter prefix and must be recomputed
        assert child.needs_decoder_update
        assert not parent.needs_decoder_update

    def test_with_score_keeps_cache(self):
        decoder_out = torch.randn(4)
        hyp = Hypothesis(labels=[2, 0], score=-1.0, decoder_out=decoder_out, processed_length=2)

        copy = hyp.with_score(-2.0)

        assert copy.labels == hyp.labels
        assert copy.labels is not hyp.labels
        assert copy.score == -2.0
        assert copy.decoder_out is decoder_out
        assert not copy.needs_decoder_update

    def test_key(self):
        assert Hypothesis(labels=[1, 2]).key == (1, 2)
        assert Hypothesis(labels=[1, 2]).key == Hypothesis(labels=[1, 2], score=-3.0).key
        assert Hypothesis(labels=[1, 2]).key != Hypothesis(labels=[2, 1]).key


class TestLogAdd:
    """Tests for log-sum-exp merging."""

    @pytest.mark.parametrize("a,b", [(-0.1, -0.3), (-5.0, -5.0), (-100.0, -0.01), (0.0, -50.0)])
    def test_log_add(self, a, b):
        c = log_add(a, b)

        assert math.exp(c) == pytest.approx(math.exp(a) + math.exp(b), rel=1e-9)
        assert c == log_add(b, a)

    def test_log_add_with_log_zero(self):
        assert log_add(-math.inf, -1.5) == -1.5
        assert log_add(-1.5, -math.inf) == -1.5
        assert log_add(-math.inf, -math.inf) == -math.inf

    def test_log_add_large_magnitudes(self):
        # exp() of these underflows to 0; the stable form must not
        c = log_add(-1000.0, -1000.0)

        assert c == pytest.approx(-1000.0 + math.log(2.0))


class TestHypothesisList:
    """Tests for the label-keyed hypothesis set."""

    def test_add_merges_identical_labels(self):
        hyps = HypothesisList()
        hyps.add(Hypothesis(labels=[1, 2], score=-0.1))
        hyps.add(Hypothesis(labels=[2, 1], score=-0.3))
        hyps.add(Hypothesis(labels=[1, 2], score=-0.7))

        assert len(hyps) == 2
        assert (1, 2) in hyps
        merged = next(h for h in hyps if h.key == (1, 2))
        assert math.exp(merged.score) == pytest.approx(math.exp(-0.1) + math.exp(-0.7))

    def test_get_most_probable(self):
        hyps = HypothesisList()
        assert hyps.get_most_probable() is None

        hyps.add(Hypothesis(labels=[1], score=-2.0))
        hyps.add(Hypothesis(labels=[2], score=-0.5))
        hyps.add(Hypothesis(labels=[3], score=-1.0))

        assert hyps.get_most_probable().labels == [2]

    def test_topk_beam_two_keeps_both(self):
        hyps = HypothesisList()
        hyps.add(Hypothesis(labels=[1, 2], score=-0.1))
        hyps.add(Hypothesis(labels=[2, 1], score=-0.3))

        pruned = hyps.topk(2)

        assert len(pruned) == 2
        assert [h.labels for h in pruned.sorted()] == [[1, 2], [2, 1]]

    def test_topk_beam_one_keeps_best(self):
        hyps = HypothesisList()
        hyps.add(Hypothesis(labels=[2, 1], score=-0.3))
        hyps.add(Hypothesis(labels=[1, 2], score=-0.1))

        pruned = hyps.topk(1)

        assert len(pruned) == 1
        assert [h.labels for h in pruned] == [[1, 2]]
        # topk returns a new list
        assert len(hyps) == 2

    def test_topk_keeps_highest_scores(self):
        torch.manual_seed(0)
        scores = torch.randn(12).tolist()
        hyps = HypothesisList()
        for i, score in enumerate(scores):
            hyps.add(Hypothesis(labels=[i], score=score))

        pruned = hyps.topk(5)

        expected = sorted(scores, reverse=True)[:5]
        assert len(pruned) == 5
        assert [h.score for h in pruned.sorted()] == expected
        assert min(h.score for h in pruned) >= max(
            h.score for h in hyps if h.key not in pruned
        )

    def test_str(self):
        hyps = HypothesisList()
        hyps.add(Hypothesis(labels=[1, 2], score=-0.25))

        assert str(hyps) == "[1, 2]:-0.250"


def test_top_k_hypotheses():
    hyps = [Hypothesis(labels=[i], score=-float(i)) for i in range(5)]

    top = top_k_hypotheses(hyps, 3)

    assert [h.labels for h in top] == [[0], [1], [2]]
