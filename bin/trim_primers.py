#!/usr/bin/env python3
import argparse, os
import pandas as pd
from asv_seq.shared import logPrint, InputError
from asv_seq.trim import RegexPrimerTrimmer, CutadaptTrimmer
from asv_seq.pipeline import find_pairs
from asv_seq import params

parser = argparse.ArgumentParser(description="Removes PCR primers from the start of forward & reverse reads; pairs missing a primer are discarded.",
                                 formatter_class=argparse.ArgumentDefaultsHelpFormatter)
parser.add_argument("forward_reads", help="Directory containing forward read files.")
parser.add_argument("reverse_reads", help="Directory containing reverse read files (will be mated by sample name).")
parser.add_argument("forward_primer", help="Forward primer (IUPAC codes allowed).")
parser.add_argument("reverse_primer", help="Reverse primer (IUPAC codes allowed).")
parser.add_argument('-o', '--out_dir', default=params.trimmed_dir, help='Output directory (forward/ & reverse/ sub-directories are created).')
parser.add_argument("-v", "--verbose", help='Output more Info', action="store_true")
parser.add_argument('-p', '--parallel', action='store_true', help='Multi-process operation')
parser.add_argument('-c', '--cutadapt', action='store_true', help='Use the cutadapt program, rather than native matching.')
parser.add_argument('--cmd', default='cutadapt', help='Name of cutadapt PATH/executable.')
parser.add_argument('-s', '--max_substitutions', type=int, default=2, help='Substitutions tolerated within a primer (native matching).')
parser.add_argument('--max_offset', type=int, default=0, help='Bases tolerated before a primer (native matching).')
parser.add_argument('-e', '--error_rate', type=float, default=0.1, help='Error rate tolerated within a primer (cutadapt).')

args = parser.parse_args()
Log = logPrint(args)
if args.parallel:
    from asv_seq.pmap import pmap as map

if args.cutadapt:
    trimmer = CutadaptTrimmer(args.forward_primer, args.reverse_primer, cmd=args.cmd, error_rate=args.error_rate)
else:
    trimmer = RegexPrimerTrimmer(args.forward_primer, args.reverse_primer, args.max_substitutions, args.max_offset)

pairs, unmatched = find_pairs(args.forward_reads, args.reverse_reads)
Log("Found {:} matching files.".format(len(pairs)), True)
for f in unmatched:
    Log("Could not find a mate for "+f)

def trim_pair(pair):
    forward_out = os.path.join(args.out_dir, 'forward', os.path.basename(pair.forward))
    reverse_out = os.path.join(args.out_dir, 'reverse', os.path.basename(pair.reverse))
    try:
        return pair.sample, pd.Series(trimmer.trim(pair.forward, pair.reverse, forward_out, reverse_out))
    except (InputError, RuntimeError) as e:
        return pair.sample, str(e)

tallies = dict()
for sample, outcome in map(trim_pair, pairs):
    if isinstance(outcome, str):
        Log('Excluded {:}: {:}'.format(sample, outcome), True)
        continue
    if 'command' in outcome:
        Log('Trimmed {:} with command:\n{:}'.format(sample, outcome.pop('command')))
    tallies[sample] = outcome

tallies = pd.DataFrame(tallies).T
tallies.index.names = ['Sample']
Log(tallies.to_string())

Log('Summary of Primer Trimming', True, header=True)
Log(tallies.sum().to_string(), True)
