"""Reference transducer network (encoder, predictor, joiner)."""

import logging
from pathlib import Path
from typing import Optional, Tuple, Union

import torch
import torch.nn as nn
import torch.nn.functional as F

logger = logging.getLogger(__name__)


class TransducerEncoder(nn.Module):
    """Unidirectional LSTM encoder.

    Args:
        input_size: Input feature dimension (e.g., 80 for log-mel)
        hidden_size: LSTM hidden dimension
        num_layers: Number of LSTM layers
        joint_dim: Output dimension (shared with predictor and joiner)
        dropout_rate: Dropout between LSTM layers

    Shape:
        - Input: (batch, time, input_size)
        - Output: (batch, time, joint_dim)
    """

    def __init__(
        self,
        input_size: int,
        hidden_size: int = 256,
        num_layers: int = 2,
        joint_dim: int = 256,
        dropout_rate: float = 0.0,
    ):
        super().__init__()

        self.input_size = input_size
        self.lstm = nn.LSTM(
            input_size,
            hidden_size,
            num_layers=num_layers,
            batch_first=True,
            dropout=dropout_rate if num_layers > 1 else 0.0,
        )
        self.output_proj = nn.Linear(hidden_size, joint_dim)

    def forward(
        self,
        xs: torch.Tensor,
        xs_lens: Optional[torch.Tensor] = None,
    ) -> Tuple[torch.Tensor, torch.Tensor]:
        """Encode a padded batch of feature sequences.

        Args:
            xs: Input features (batch, time, input_size)
            xs_lens: Input lengths (batch,); all frames valid if None

        Returns:
            Tuple of (encoder_out, encoder_out_lens)
        """
        if xs_lens is None:
            xs_lens = torch.full((xs.size(0),), xs.size(1), dtype=torch.long, device=xs.device)

        hs, _ = self.lstm(xs)
        return self.output_proj(hs), xs_lens


class TransducerPredictor(nn.Module):
    """LSTM prediction network conditioned on the label history.

    The blank id doubles as the start symbol, so every label sequence is
    prefixed with blank before it is embedded.

    Args:
        vocab_size: Vocabulary size (blank is the last entry)
        embed_size: Label embedding dimension
        hidden_size: LSTM hidden dimension
        num_layers: Number of LSTM layers
        joint_dim: Output dimension (shared with encoder and joiner)
    """

    def __init__(
        self,
        vocab_size: int,
        embed_size: int = 256,
        hidden_size: int = 256,
        num_layers: int = 1,
        joint_dim: int = 256,
    ):
        super().__init__()

        self.vocab_size = vocab_size
        self.blank_id = vocab_size - 1
        self.embed = nn.Embedding(vocab_size, embed_size)
        self.lstm = nn.LSTM(embed_size, hidden_size, num_layers=num_layers, batch_first=True)
        self.output_proj = nn.Linear(hidden_size, joint_dim)

    def forward(self, ys: torch.Tensor) -> torch.Tensor:
        """Run the predictor over label sequences.

        Args:
            ys: Label ids without start symbol (batch, label_len)

        Returns:
            Predictor output (batch, label_len + 1, joint_dim); position u is
            conditioned on the first u labels.
        """
        start = torch.full((ys.size(0), 1), self.blank_id, dtype=torch.long, device=ys.device)
        ys_in = torch.cat([start, ys], dim=1)

        hs, _ = self.lstm(self.embed(ys_in))
        return self.output_proj(hs)


class TransducerJoiner(nn.Module):
    """Joint network: broadcast sum, tanh, projection, log-softmax.

    Args:
        joint_dim: Dimension of encoder and predictor outputs
        vocab_size: Vocabulary size (including blank)
    """

    def __init__(self, joint_dim: int, vocab_size: int):
        super().__init__()

        self.vocab_size = vocab_size
        self.output_proj = nn.Linear(joint_dim, vocab_size)

    def forward(self, encoder_out: torch.Tensor, predictor_out: torch.Tensor) -> torch.Tensor:
        """Combine encoder and predictor outputs.

        Inputs broadcast against each other, e.g. (batch, T, 1, D) with
        (batch, 1, U, D) for the full lattice, or (D,) with (D,) for a single
        frame and label position.

        Returns:
            Log probabilities over the vocabulary (..., vocab_size)
        """
        joint = torch.tanh(encoder_out + predictor_out)
        return F.log_softmax(self.output_proj(joint), dim=-1)


class TransducerModel(nn.Module):
    """Transducer model holding encoder, predictor and joiner.

    Args:
        vocab_size: Vocabulary size; the last id is blank
        encoder: Encoder module
        predictor: Prediction network
        joiner: Joint network
    """

    def __init__(
        self,
        vocab_size: int,
        encoder: TransducerEncoder,
        predictor: TransducerPredictor,
        joiner: TransducerJoiner,
    ):
        super().__init__()

        self.vocab_size = vocab_size
        self.blank_id = vocab_size - 1
        self.encoder = encoder
        self.predictor = predictor
        self.joiner = joiner

    @property
    def input_size(self) -> int:
        return self.encoder.input_size

    def encode(
        self,
        speech: torch.Tensor,
        speech_lengths: Optional[torch.Tensor] = None,
    ) -> Tuple[torch.Tensor, torch.Tensor]:
        """Encode features (batch, time, input_size)."""
        return self.encoder(speech, speech_lengths)

    def forward(
        self,
        speech: torch.Tensor,
        speech_lengths: torch.Tensor,
        ys: torch.Tensor,
    ) -> torch.Tensor:
        """Compute the full (batch, T, U + 1, vocab_size) output lattice."""
        encoder_out, _ = self.encode(speech, speech_lengths)
        predictor_out = self.predictor(ys)
        return self.joiner(encoder_out.unsqueeze(2), predictor_out.unsqueeze(1))

    @classmethod
    def build_model(
        cls,
        vocab_size: int,
        input_size: int = 80,
        joint_dim: int = 256,
        encoder_hidden_size: int = 256,
        encoder_num_layers: int = 2,
        predictor_embed_size: int = 256,
        predictor_hidden_size: int = 256,
        predictor_num_layers: int = 1,
        dropout_rate: float = 0.0,
    ) -> "TransducerModel":
        """Build a transducer model from configuration.

        Args:
            vocab_size: Vocabulary size (including blank as last entry)
            input_size: Input feature dimension
            joint_dim: Joint dimension of encoder/predictor outputs
            encoder_hidden_size: Encoder LSTM hidden dimension
            encoder_num_layers: Number of encoder LSTM layers
            predictor_embed_size: Predictor embedding dimension
            predictor_hidden_size: Predictor LSTM hidden dimension
            predictor_num_layers: Number of predictor LSTM layers
            dropout_rate: Encoder dropout rate

        Returns:
            TransducerModel instance
        """
        encoder = TransducerEncoder(
            input_size=input_size,
            hidden_size=encoder_hidden_size,
            num_layers=encoder_num_layers,
            joint_dim=joint_dim,
            dropout_rate=dropout_rate,
        )
        predictor = TransducerPredictor(
            vocab_size=vocab_size,
            embed_size=predictor_embed_size,
            hidden_size=predictor_hidden_size,
            num_layers=predictor_num_layers,
            joint_dim=joint_dim,
        )
        joiner = TransducerJoiner(joint_dim=joint_dim, vocab_size=vocab_size)

        return cls(vocab_size=vocab_size, encoder=encoder, predictor=predictor, joiner=joiner)

    @classmethod
    def from_pretrained(
        cls,
        model_dir: Union[str, Path],
        device: str = "cpu",
    ) -> "TransducerModel":
        """Load a trained model from a directory.

        Args:
            model_dir: Directory containing the checkpoint (and optionally config.yaml)
            device: Device to load the model on

        Returns:
            Loaded model in eval mode
        """
        from transducer_decoder.model.checkpoint_loader import load_model_from_directory

        model = load_model_from_directory(Path(model_dir), model_class=cls)
        model = model.to(device)
        model.eval()
        return model
