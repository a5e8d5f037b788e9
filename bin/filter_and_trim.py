#!/usr/bin/env python3
import argparse, os
import pandas as pd
from asv_seq.shared import logPrint, InputError
from asv_seq.fastq import filter_and_trim
from asv_seq.pipeline import find_pairs
from asv_seq import params

parser = argparse.ArgumentParser(description="Quality-filters & trims paired-end FASTQ files. Pairs are kept only if both mates pass.",
                                 formatter_class=argparse.ArgumentDefaultsHelpFormatter)
parser.add_argument("forward_reads", help="Directory containing forward read files.")
parser.add_argument("reverse_reads", help="Directory containing reverse read files (will be mated by sample name).")
parser.add_argument('-o', '--out_dir', default=params.filtered_dir, help='Output directory (forward/ & reverse/ sub-directories are created).')
parser.add_argument("-v", "--verbose", help='Output more Info', action="store_true")
parser.add_argument('-p', '--parallel', action='store_true', help='Multi-process operation')
parser.add_argument('--trunc_len', type=int, nargs=2, default=params.trunc_len, help='Truncate (forward, reverse) reads to these lengths (0 = no truncation).')
parser.add_argument('--trim_left', type=int, nargs=2, default=params.trim_left, help='Bases to remove from the start of (forward, reverse) reads.')
parser.add_argument('--max_ee', type=float, nargs=2, default=params.max_ee, help='Maximum expected errors of (forward, reverse) reads.')
parser.add_argument('--trunc_q', type=int, default=params.trunc_q, help='Truncate reads at the first quality score <= trunc_q.')
parser.add_argument('--max_n', type=int, default=params.max_n, help='Maximum number of Ns in a read.')
parser.add_argument('--min_len', type=int, default=params.min_len, help='Minimum read length after trimming.')

args = parser.parse_args()
Log = logPrint(args)
if args.parallel:
    from asv_seq.pmap import pmap as map

pairs, unmatched = find_pairs(args.forward_reads, args.reverse_reads)
Log("Found {:} matching files.".format(len(pairs)), True)
for f in unmatched:
    Log("Could not find a mate for "+f)

options = dict(trunc_len=tuple(args.trunc_len), trim_left=tuple(args.trim_left), max_ee=tuple(args.max_ee),
               trunc_q=args.trunc_q, max_n=args.max_n, min_len=args.min_len)

def filter_pair(pair):
    forward_out = os.path.join(args.out_dir, 'forward', os.path.basename(pair.forward))
    reverse_out = os.path.join(args.out_dir, 'reverse', os.path.basename(pair.reverse))
    try:
        return filter_and_trim(pair.forward, pair.reverse, forward_out, reverse_out, sample=pair.sample, **options)
    except InputError as e:
        return pd.Series({'reads.in':0, 'reads.out':0, 'error':str(e)}, name=pair.sample)

tallies = pd.DataFrame(list(map(filter_pair, pairs)))
tallies.index.names = ['Sample']
if 'error' in tallies.columns:
    for sample, error in tallies['error'].dropna().items():
        Log('Excluded {:}: {:}'.format(sample, error), True)
    tallies = tallies.drop('error', axis=1)
Log(tallies.to_string())

Log('Summary of Filtering', True, header=True)
Totals = tallies.sum()
Log('{:,} of {:,} read pairs passed ({:.2%}).'.format(Totals['reads.out'], Totals['reads.in'],
        Totals['reads.out']/Totals['reads.in'] if Totals['reads.in'] else 0), True)
