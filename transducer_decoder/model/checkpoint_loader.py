"""Utilities for loading transducer model checkpoints."""

import logging
from pathlib import Path
from typing import Dict, Optional, Tuple, Type

import numpy as np
import torch
import torch.nn as nn
import yaml

from transducer_decoder.errors import InvalidInput

logger = logging.getLogger(__name__)

CHECKPOINT_NAMES = ("model.pth", "checkpoint.pth", "valid.loss.best.pth")


def load_config(config_path: Path) -> Dict:
    """Load model configuration from YAML file.

    Args:
        config_path: Path to config.yaml

    Returns:
        Configuration dictionary
    """
    with open(config_path, "r") as f:
        config = yaml.safe_load(f)
    return config or {}


def load_checkpoint(checkpoint_path: Path) -> Dict:
    """Load a .pth checkpoint onto the CPU."""
    checkpoint = torch.load(checkpoint_path, map_location="cpu")
    return checkpoint


def extract_state_dict(checkpoint: Dict) -> Dict[str, torch.Tensor]:
    if "model" in checkpoint:
        return checkpoint["model"]
    if "state_dict" in checkpoint:
        return checkpoint["state_dict"]
    return checkpoint


def _count_lstm_layers(state_dict: Dict[str, torch.Tensor], prefix: str) -> int:
    layers = 0
    while f"{prefix}.weight_ih_l{layers}" in state_dict:
        layers += 1
    return layers


def infer_model_architecture(state_dict: Dict[str, torch.Tensor]) -> Dict:
    """Infer ``TransducerModel.build_model`` arguments from a state_dict.

    Args:
        state_dict: Model state dictionary

    Returns:
        Dictionary with architecture parameters
    """
    arch = {}

    if "joiner.output_proj.weight" in state_dict:
        vocab_size, joint_dim = state_dict["joiner.output_proj.weight"].shape
        arch["vocab_size"] = int(vocab_size)
        arch["joint_dim"] = int(joint_dim)

    if "encoder.lstm.weight_ih_l0" in state_dict:
        # LSTM input weights stack 4 gates: (4 * hidden, input)
        gates, input_size = state_dict["encoder.lstm.weight_ih_l0"].shape
        arch["input_size"] = int(input_size)
        arch["encoder_hidden_size"] = int(gates // 4)
        arch["encoder_num_layers"] = _count_lstm_layers(state_dict, "encoder.lstm")

    if "predictor.embed.weight" in state_dict:
        arch["predictor_embed_size"] = int(state_dict["predictor.embed.weight"].shape[1])

    if "predictor.lstm.weight_hh_l0" in state_dict:
        arch["predictor_hidden_size"] = int(state_dict["predictor.lstm.weight_hh_l0"].shape[1])
        arch["predictor_num_layers"] = _count_lstm_layers(state_dict, "predictor.lstm")

    logger.info(f"Inferred architecture: {arch}")
    return arch


def load_weights(
    model: nn.Module,
    state_dict: Dict[str, torch.Tensor],
    strict: bool = True,
) -> nn.Module:
    """Load weights into a model, logging any key mismatches."""
    missing_keys, unexpected_keys = model.load_state_dict(state_dict, strict=strict)

    if missing_keys:
        logger.warning(f"Missing keys ({len(missing_keys)}): {missing_keys[:10]}...")
    if unexpected_keys:
        logger.warning(f"Unexpected keys ({len(unexpected_keys)}): {unexpected_keys[:10]}...")

    logger.info(f"Successfully loaded {len(state_dict)} parameters")
    return model


def find_checkpoint(model_dir: Path) -> Optional[Path]:
    for name in CHECKPOINT_NAMES:
        path = model_dir / name
        if path.exists():
            return path
    return None


def load_model_from_directory(
    model_dir: Path,
    model_class: Type[nn.Module],
    config_name: str = "config.yaml",
) -> nn.Module:
    """Build a model and load its weights from a directory.

    Architecture arguments come from ``config_name`` when present (under a
    ``model_conf`` key or at top level); anything missing is inferred from
    the checkpoint tensors.

    Args:
        model_dir: Directory containing the checkpoint and optional config
        model_class: Class providing a ``build_model`` classmethod
        config_name: Name of config file

    Returns:
        Model with loaded weights
    """
    model_dir = Path(model_dir)

    checkpoint_path = find_checkpoint(model_dir)
    if checkpoint_path is None:
        raise FileNotFoundError(f"No checkpoint found in {model_dir}")

    logger.info(f"Loading checkpoint from {checkpoint_path}")
    state_dict = extract_state_dict(load_checkpoint(checkpoint_path))

    arch = infer_model_architecture(state_dict)

    config_path = model_dir / config_name
    if config_path.exists():
        config = load_config(config_path)
        arch.update(config.get("model_conf", config))
        logger.info(f"Loaded config from {config_path}")
    else:
        logger.warning(f"Config file not found: {config_path}")

    if "vocab_size" not in arch:
        raise ValueError(f"Could not determine vocab_size from {checkpoint_path}")

    model = model_class.build_model(**arch)
    return load_weights(model, state_dict)


def load_normalization_stats(stats_path: Path) -> Tuple[np.ndarray, np.ndarray]:
    """Load feature normalization statistics.

    Args:
        stats_path: Path to an .npz file with mean/std or sum/sum_square/count

    Returns:
        Tuple of (mean, std) arrays
    """
    stats = np.load(stats_path)

    if "mean" in stats:
        mean = stats["mean"]
        std = stats["std"]
    elif "sum" in stats and "sum_square" in stats and "count" in stats:
        count = stats["count"]
        mean = stats["sum"] / count
        mean_square = stats["sum_square"] / count
        std = np.sqrt(np.maximum(mean_square - mean ** 2, 1e-10))
    else:
        raise ValueError(f"Unknown stats format. Keys: {list(stats.keys())}")

    logger.info(f"Loaded normalization stats: mean shape {mean.shape}, std shape {std.shape}")

    return mean, std


def apply_feature_normalization(
    features: torch.Tensor,
    mean: np.ndarray,
    std: np.ndarray,
) -> torch.Tensor:
    """Mean-variance normalize (..., feat_dim) features.

    Raises:
        InvalidInput: Feature dimension differs from the stats dimension
    """
    if not isinstance(features, torch.Tensor):
        raise InvalidInput(f"Expected a torch.Tensor, got {type(features).__name__}")
    feat_dim = features.size(-1) if features.dim() > 0 else 0
    if feat_dim != mean.shape[-1] or feat_dim != std.shape[-1]:
        raise InvalidInput(
            f"Feature dimension {feat_dim} does not match normalization stats dimension {mean.shape[-1]}"
        )

    mean_tensor = torch.as_tensor(mean, dtype=features.dtype, device=features.device)
    # Constant feature channels would otherwise divide by zero
    std_tensor = torch.as_tensor(std, dtype=features.dtype, device=features.device).clamp(min=1e-5)
    return (features - mean_tensor) / std_tensor
