#!/usr/bin/env python3
import argparse, os
from threading import Event
import signal
from asv_seq.shared import logPrint
from asv_seq.pipeline import Config, find_pairs, run_pipeline
from asv_seq import params

parser = argparse.ArgumentParser(   description="""Infers the amplicon sequence variants of paired-end FASTQ files and tabulates their abundance in every sample.""",
                                    formatter_class=argparse.ArgumentDefaultsHelpFormatter)
parser.add_argument("forward_reads", help="Directory containing forward read files.")
parser.add_argument("reverse_reads", help="Directory containing reverse read files (will be mated by sample name).")
parser.add_argument('-o', '--output_dir', default='asvs', help='Directory for the sequence table, sequence catalog, read tracking table & error models.')
parser.add_argument("-v", "--verbose", help='Output more Info', action="store_true")
parser.add_argument('-p', '--parallel', action='store_true', help='Multi-process operation.')

FT_group = parser.add_argument_group('Filtering', 'Quality filtering & trimming of reads')
FT_group.add_argument('--no_filter', action='store_true', help='Reads are already filtered & trimmed.')
FT_group.add_argument('--trunc_len', type=int, nargs=2, default=params.trunc_len, help='Truncate (forward, reverse) reads to these lengths (0 = no truncation).')
FT_group.add_argument('--trim_left', type=int, nargs=2, default=params.trim_left, help='Bases to remove from the start of (forward, reverse) reads.')
FT_group.add_argument('--max_ee', type=float, nargs=2, default=params.max_ee, help='Maximum expected errors of (forward, reverse) reads.')
FT_group.add_argument('--trunc_q', type=int, default=params.trunc_q, help='Truncate reads at the first quality score <= trunc_q.')
FT_group.add_argument('--min_len', type=int, default=params.min_len, help='Minimum read length after trimming.')

LE_group = parser.add_argument_group('Error Model', 'Learning of the error model')
LE_group.add_argument('--nbases', type=float, default=params.nbases, help='Number of nucleotides used to learn error rates.')
LE_group.add_argument('--max_consist', type=int, default=params.max_consist, help='Maximum iterations of self-consistent error learning.')
LE_group.add_argument('--convergence_threshold', type=float, default=params.convergence_threshold, help='Error learning converges when no rate changes more than this.')
LE_group.add_argument('--error_models', nargs=2, default=None, help='Use these (forward, reverse) error model CSV files instead of learning.')
LE_group.add_argument('--plot', action='store_true', help='Graph the learned error models.')

DN_group = parser.add_argument_group('Denoising', 'Inference of sequence variants')
DN_group.add_argument('--omega_a', type=float, default=params.omega_a, help='Abundance p-value threshold for a new sequence variant.')
DN_group.add_argument('--no_kmers', action='store_true', help='Compare every pair of same-length sequences (no k-mer screen).')
DN_group.add_argument('--detect_singletons', action='store_true', help='Allow sequences observed once to be inferred as variants.')
DN_group.add_argument('--pool', action='store_true', help='Denoise all samples together.')

MG_group = parser.add_argument_group('Merging', 'Merging of forward & reverse reads')
MG_group.add_argument('--min_overlap', type=int, default=params.min_overlap, help='Minimum overlap of mates.')
MG_group.add_argument('--lenient', action='store_true', help='Resolve overlap mismatches by quality score.')
MG_group.add_argument('--max_mismatch', type=int, default=params.max_mismatch, help='Overlap mismatches tolerated in lenient mode.')
MG_group.add_argument('--trim_overhang', action='store_true', help='Trim overhanging bases of merged reads.')
MG_group.add_argument('--just_concatenate', action='store_true', help='Concatenate mates (with {:} between) instead of merging.'.format(params.concatenation_spacer))

CH_group = parser.add_argument_group('Table & Chimeras', 'Sequence table & bimera removal')
CH_group.add_argument('--length_band', type=int, nargs=2, default=params.length_band, help='Expected (min, max) amplicon length.')
CH_group.add_argument('--order_by', choices=['first', 'abundance', 'sequence'], default=params.order_by, help='Order of sequence table columns.')
CH_group.add_argument('-m', '--chimera_method', choices=['consensus', 'per-sample', 'pooled'], default=params.chimera_method, help='Bimera removal method.')
CH_group.add_argument('--min_fold', type=float, default=params.min_fold_parent_over_abundance, help='Minimum fold-abundance of bimera parents.')
CH_group.add_argument('--min_sample_fraction', type=float, default=params.min_sample_fraction, help='Fraction of samples that must flag a consensus bimera.')
CH_group.add_argument('--allow_one_off', action='store_true', help='Also flag sequences one mismatch from a bimera.')

args = parser.parse_args()
Log = logPrint(args)

pairs, unmatched = find_pairs(args.forward_reads, args.reverse_reads)
Log("Found {:} matching files.".format(len(pairs)), True)
if unmatched:
    Log("Could not find a mate for:\n"+'\n'.join(unmatched), True)

config = Config(trunc_len=tuple(args.trunc_len), trim_left=tuple(args.trim_left), max_ee=tuple(args.max_ee),
                trunc_q=args.trunc_q, min_len=args.min_len, filter=not args.no_filter,
                nbases=int(args.nbases), max_consist=args.max_consist, convergence_threshold=args.convergence_threshold,
                error_models=args.error_models, plot=args.plot,
                omega_a=args.omega_a, use_kmers=not args.no_kmers, detect_singletons=args.detect_singletons, pool=args.pool,
                min_overlap=args.min_overlap, lenient=args.lenient, max_mismatch=args.max_mismatch,
                trim_overhang=args.trim_overhang, just_concatenate=args.just_concatenate,
                length_band=args.length_band, order_by=args.order_by, chimera_method=args.chimera_method,
                min_fold=args.min_fold, min_sample_fraction=args.min_sample_fraction, allow_one_off=args.allow_one_off,
                output_dir=args.output_dir, processes=params.CPUs if args.parallel else 1)

cancel = Event()
def interrupt(signum, frame):
    Log('Interrupted: finishing the current stage...', True)
    cancel.set()
signal.signal(signal.SIGINT, interrupt)

result = run_pipeline(config, pairs, Log=Log, cancel=cancel)

if result.failed:
    Log('Failed Samples', True, header=True)
    for sample, error in result.failed.items():
        Log('{:}: {:}'.format(sample, error), True)
if result.cancelled:
    Log('Run was cancelled; outputs are incomplete.', True)
elif result.table is not None:
    Log('Wrote {:} sequence variants to {:}'.format(len(result.table), os.path.join(args.output_dir, params.table_file)), True)
