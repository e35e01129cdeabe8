"""Unit tests for the transducer network."""

import pytest
import torch

from transducer_decoder.model import (
    TransducerEncoder,
    TransducerJoiner,
    TransducerModel,
    TransducerPredictor,
)


class TestTransducerEncoder:
    """Tests for TransducerEncoder."""

    def test_forward_shape(self):
        encoder = TransducerEncoder(input_size=8, hidden_size=16, num_layers=2, joint_dim=12)

        xs = torch.randn(3, 20, 8)
        out, lens = encoder(xs)

        assert out.shape == (3, 20, 12)
        assert lens.tolist() == [20, 20, 20]

    def test_lengths_passed_through(self):
        encoder = TransducerEncoder(input_size=8, hidden_size=16, num_layers=1, joint_dim=12)

        xs_lens = torch.tensor([20, 15])
        _, lens = encoder(torch.randn(2, 20, 8), xs_lens)

        assert torch.equal(lens, xs_lens)

    def test_causal(self):
        """Output at frame t does not depend on later frames."""
        encoder = TransducerEncoder(input_size=8, hidden_size=16, num_layers=2, joint_dim=12)
        encoder.eval()

        xs = torch.randn(1, 10, 8)
        out_full, _ = encoder(xs)
        out_prefix, _ = encoder(xs[:, :6])

        assert torch.allclose(out_full[:, :6], out_prefix, atol=1e-6)


class TestTransducerPredictor:
    """Tests for TransducerPredictor."""

    def test_forward_shape(self):
        predictor = TransducerPredictor(vocab_size=6, embed_size=8, hidden_size=16, joint_dim=12)

        out = predictor(torch.tensor([[0, 3, 1], [2, 2, 4]]))

        # One extra position for the blank start symbol
        assert out.shape == (2, 4, 12)

    def test_empty_history(self):
        predictor = TransducerPredictor(vocab_size=6, embed_size=8, hidden_size=16, joint_dim=12)

        out = predictor(torch.zeros(1, 0, dtype=torch.long))

        assert out.shape == (1, 1, 12)

    def test_prefix_consistency(self):
        """Position u only sees the first u labels."""
        predictor = TransducerPredictor(vocab_size=6, embed_size=8, hidden_size=16, joint_dim=12)

        full = predictor(torch.tensor([[0, 3, 1]]))
        prefix = predictor(torch.tensor([[0, 3]]))

        assert torch.allclose(full[:, :3], prefix, atol=1e-6)

    def test_blank_is_last(self):
        predictor = TransducerPredictor(vocab_size=6)

        assert predictor.blank_id == 5


class TestTransducerJoiner:
    """Tests for TransducerJoiner."""

    def test_single_frame(self):
        joiner = TransducerJoiner(joint_dim=12, vocab_size=6)

        log_probs = joiner(torch.randn(12), torch.randn(12))

        assert log_probs.shape == (6,)
        assert torch.logsumexp(log_probs, dim=-1).item() == pytest.approx(0.0, abs=1e-5)

    def test_broadcast_lattice(self):
        joiner = TransducerJoiner(joint_dim=12, vocab_size=6)

        enc = torch.randn(2, 7, 1, 12)
        pred = torch.randn(2, 1, 4, 12)
        log_probs = joiner(enc, pred)

        assert log_probs.shape == (2, 7, 4, 6)
        assert torch.allclose(log_probs[1, 3, 2], joiner(enc[1, 3, 0], pred[1, 0, 2]), atol=1e-6)


class TestTransducerModel:
    """Tests for TransducerModel."""

    def test_build_model(self):
        model = TransducerModel.build_model(
            vocab_size=6,
            input_size=8,
            joint_dim=16,
            encoder_hidden_size=16,
            encoder_num_layers=1,
            predictor_embed_size=8,
            predictor_hidden_size=16,
        )

        assert model.vocab_size == 6
        assert model.blank_id == 5
        assert model.input_size == 8
        assert model.encoder.lstm.num_layers == 1
        assert model.predictor.lstm.hidden_size == 16

    def test_forward_lattice_shape(self):
        model = TransducerModel.build_model(
            vocab_size=6, input_size=8, joint_dim=16, encoder_hidden_size=16,
            encoder_num_layers=1, predictor_embed_size=8, predictor_hidden_size=16,
        )

        lattice = model(torch.randn(2, 9, 8), torch.tensor([9, 9]), torch.tensor([[1, 2], [3, 0]]))

        assert lattice.shape == (2, 9, 3, 6)
