"""Unit tests for checkpoint loading."""

import numpy as np
import pytest
import torch
import yaml

from transducer_decoder.errors import InvalidInput
from transducer_decoder.model import TransducerModel
from transducer_decoder.model.checkpoint_loader import (
    apply_feature_normalization,
    extract_state_dict,
    find_checkpoint,
    infer_model_architecture,
    load_config,
    load_model_from_directory,
    load_normalization_stats,
)

ARCH = dict(
    vocab_size=7,
    input_size=10,
    joint_dim=16,
    encoder_hidden_size=12,
    encoder_num_layers=2,
    predictor_embed_size=8,
    predictor_hidden_size=20,
    predictor_num_layers=1,
)


@pytest.fixture
def model():
    torch.manual_seed(0)
    model = TransducerModel.build_model(**ARCH)
    model.eval()
    return model


class TestArchitectureInference:
    """Tests for infer_model_architecture."""

    def test_infer_from_state_dict(self, model):
        arch = infer_model_architecture(model.state_dict())

        assert arch == ARCH

    def test_extract_state_dict(self, model):
        state_dict = model.state_dict()

        assert extract_state_dict({"model": state_dict}) is state_dict
        assert extract_state_dict({"state_dict": state_dict}) is state_dict
        assert extract_state_dict(state_dict) is state_dict


class TestLoadModel:
    """Tests for loading a model directory."""

    def test_from_pretrained_roundtrip(self, model, tmp_path):
        torch.save(model.state_dict(), tmp_path / "model.pth")

        loaded = TransducerModel.from_pretrained(tmp_path)

        assert not loaded.training
        features = torch.randn(1, 5, ARCH["input_size"])
        with torch.no_grad():
            expected, _ = model.encode(features)
            actual, _ = loaded.encode(features)
        assert torch.allclose(expected, actual)

    def test_wrapped_checkpoint(self, model, tmp_path):
        torch.save({"model": model.state_dict()}, tmp_path / "valid.loss.best.pth")

        loaded = load_model_from_directory(tmp_path, model_class=TransducerModel)

        assert loaded.vocab_size == ARCH["vocab_size"]

    def test_config_overrides_inferred(self, model, tmp_path):
        torch.save(model.state_dict(), tmp_path / "model.pth")
        with open(tmp_path / "config.yaml", "w") as f:
            yaml.safe_dump({"model_conf": {"dropout_rate": 0.1}}, f)

        loaded = load_model_from_directory(tmp_path, model_class=TransducerModel)

        assert loaded.encoder.lstm.dropout == pytest.approx(0.1)

    def test_missing_checkpoint(self, tmp_path):
        assert find_checkpoint(tmp_path) is None
        with pytest.raises(FileNotFoundError):
            load_model_from_directory(tmp_path, model_class=TransducerModel)

    def test_checkpoint_preference(self, tmp_path):
        (tmp_path / "checkpoint.pth").touch()
        (tmp_path / "model.pth").touch()

        assert find_checkpoint(tmp_path) == tmp_path / "model.pth"


def test_load_config_empty(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("")

    assert load_config(path) == {}


class TestNormalization:
    """Tests for feature normalization stats."""

    def test_mean_std(self, tmp_path):
        path = tmp_path / "stats.npz"
        np.savez(path, mean=np.array([1.0, 2.0]), std=np.array([2.0, 4.0]))

        mean, std = load_normalization_stats(path)
        features = apply_feature_normalization(torch.tensor([[3.0, 6.0]]), mean, std)

        assert torch.allclose(features, torch.tensor([[1.0, 1.0]]))

    def test_accumulated_stats(self, tmp_path):
        path = tmp_path / "stats.npz"
        data = np.array([[1.0, 0.0], [3.0, 4.0]])
        np.savez(
            path,
            sum=data.sum(axis=0),
            sum_square=(data ** 2).sum(axis=0),
            count=np.array(2.0),
        )

        mean, std = load_normalization_stats(path)

        assert np.allclose(mean, [2.0, 2.0])
        assert np.allclose(std, [1.0, 2.0])

    def test_unknown_format(self, tmp_path):
        path = tmp_path / "stats.npz"
        np.savez(path, foo=np.zeros(2))

        with pytest.raises(ValueError):
            load_normalization_stats(path)

    def test_dimension_mismatch(self):
        mean, std = np.zeros(4), np.ones(4)

        with pytest.raises(InvalidInput):
            apply_feature_normalization(torch.randn(3, 5), mean, std)

    def test_zero_std_channel(self):
        features = apply_feature_normalization(
            torch.tensor([[1.0, 2.0]]), np.array([1.0, 0.0]), np.array([0.0, 1.0])
        )

        assert torch.isfinite(features).all()
        assert features[0, 1].item() == pytest.approx(2.0)
