"""Command line decoding of feature archives with a transducer model."""

import argparse
import logging
import os
import sys
from contextlib import nullcontext
from pathlib import Path
from typing import Iterator, Tuple

import numpy as np
import torch
from tqdm import tqdm

from transducer_decoder.beam_search.beam_search import LENGTH_NORM_MODES
from transducer_decoder.model import TransducerModel
from transducer_decoder.model.checkpoint_loader import load_config, load_normalization_stats
from transducer_decoder.recognizer import (
    DecodingConfig,
    DecodingResult,
    create_recognizer,
    output_labels,
)

logger = logging.getLogger(__name__)


def read_feature_archive(path: Path) -> Iterator[Tuple[str, torch.Tensor]]:
    """Iterate over (utterance id, features) in an .npz archive.

    Each array in the archive holds one utterance as (time, feat_dim).
    Features are returned unnormalized; ``TransducerRecognizer`` applies
    feature stats per utterance.
    """
    with np.load(path) as archive:
        for utt_id in archive.files:
            yield utt_id, torch.from_numpy(np.asarray(archive[utt_id], dtype=np.float32))


def format_result(utt_id: str, result: DecodingResult, blank_id: int, nbest: int = 1) -> str:
    """Format a result as ``utt_id<TAB>labels`` (plus rank and score for N-best)."""
    if nbest <= 1:
        return f"{utt_id}\t{' '.join(map(str, result.labels))}"

    lines = []
    for rank, hyp in enumerate(result.nbest):
        labels = " ".join(map(str, output_labels(hyp, blank_id)))
        lines.append(f"{utt_id}\t{rank}\t{hyp.normalized_score:.4f}\t{labels}")
    return "\n".join(lines)


def build_config(args: argparse.Namespace) -> DecodingConfig:
    """Decoding options: YAML file first, command line flags on top."""
    options = {}
    if args.config:
        options.update(load_config(Path(args.config)))

    overrides = {
        "beam_size": args.beamsize,
        "expand_beam": args.expand_beam,
        "max_decode_steps": args.max_decode_steps,
        "length_norm": args.length_norm,
        "nbest": args.nbest,
        "search_type": "greedy" if args.greedy else None,
    }
    options.update({k: v for k, v in overrides.items() if v is not None})
    return DecodingConfig.from_dict(options)


def main():
    parser = argparse.ArgumentParser(
        description='Decode feature archives with a transducer model using greedy or beam search.')
    parser.add_argument('-m', '--model-dir', dest='model_dir', required=True,
                        help='Directory containing model.pth (and optionally config.yaml)', type=str)
    parser.add_argument('-c', '--config', dest='config', default='',
                        help='YAML file with decoding options (beam_size, expand_beam, ...)', type=str)
    parser.add_argument('-d', '--device', dest='device', default='cpu',
                        help="Computation device. Either 'cpu' or 'cuda'.")
    parser.add_argument('-b', '--beamsize', dest='beamsize', type=int, default=None,
                        help='Hypotheses kept per frame (default: 10)')
    parser.add_argument('--expand-beam', dest='expand_beam', type=int, default=None,
                        help='Candidates explored per hypothesis and expansion step (default: 20)')
    parser.add_argument('--greedy', dest='greedy', action='store_true',
                        help='Use greedy decoding instead of beam search')
    parser.add_argument('--nbest', dest='nbest', type=int, default=None,
                        help='Number of hypotheses written per utterance (default: 1)')
    parser.add_argument('--length-norm', dest='length_norm', choices=LENGTH_NORM_MODES, default=None,
                        help='Score normalization applied before selecting the best hypothesis (default: labels)')
    parser.add_argument('--max-decode-steps', dest='max_decode_steps', type=int, default=None,
                        help='Maximum labels emitted per utterance in greedy mode (default: 2000)')
    parser.add_argument('--stats', dest='stats', default='',
                        help='Feature normalization stats (.npz with mean/std or sum/sum_square/count)', type=str)
    parser.add_argument('--num-threads', dest='num_threads', default=1,
                        help='Set number of threads used for intraop parallelism on CPU in pytorch.', type=int)
    parser.add_argument('-o', '--output', dest='output', default='-',
                        help="Output file, '-' for stdout", type=str)
    parser.add_argument('--no-progress', dest='no_progress', help='Show no progress bar',
                        action='store_true')
    parser.add_argument('--log-level', dest='log_level', default='WARNING',
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
                        help='Set logging level (default: WARNING)', type=str)
    parser.add_argument('inputfile', help='Feature archive (.npz, one (time, feat_dim) array per utterance)')

    args = parser.parse_args()

    logging.basicConfig(level=getattr(logging, args.log_level))

    if args.num_threads != -1:
        torch.set_num_threads(args.num_threads)

    if not os.path.isfile(args.inputfile):
        print(f"Error: Input file '{args.inputfile}' does not exist or is not a valid file.")
        sys.exit(-1)

    try:
        config = build_config(args)
    except ValueError as e:
        print(f"Error: {e}")
        sys.exit(-1)

    stats = load_normalization_stats(Path(args.stats)) if args.stats else None

    model = TransducerModel.from_pretrained(args.model_dir, device=args.device)
    recognizer = create_recognizer(model, config, device=args.device, feature_stats=stats)

    with np.load(args.inputfile) as archive:
        num_utterances = len(archive.files)

    utterances = tqdm(read_feature_archive(Path(args.inputfile)), total=num_utterances,
                      desc='Decoding', disable=args.no_progress)

    out_context = open(args.output, 'w') if args.output != '-' else nullcontext(sys.stdout)
    with out_context as out:
        for utt_id, result in recognizer.decode_utterances(utterances):
            out.write(format_result(utt_id, result, recognizer.blank_id, config.nbest) + '\n')

    logger.info(f"Decoded {recognizer.num_decoded} utterances, {recognizer.num_failed} failed")
    if recognizer.num_failed:
        print(f"Warning: {recognizer.num_failed} of {num_utterances} utterances could not be decoded.",
              file=sys.stderr)


if __name__ == '__main__':
    main()
