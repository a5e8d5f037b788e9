"""Merging of denoised forward & reverse reads into full-length amplicons.

Every read pair is represented by the centers of its forward & reverse clusters.
The reverse center is reverse-complemented and slid along the forward center to
find the best ungapped overlap (score = matches - mismatch_penalty*mismatches;
ties go to the longer overlap). Pairs whose best overlap is too short or not
identical are rejected. Rejection is an expected outcome that is tallied, not an
error. In `lenient` mode up to `max_mismatch` mismatches are tolerated, and each
is resolved in favor of the read with the higher quality score.

mergers are pd.DataFrames with one row per (forward cluster, reverse cluster)
combination observed in a sample:

sequence, abundance, forward, reverse, nmatch, nmismatch, overlap, accept, reason

`abundance` is the # of read pairs with that combination.
"""
import numpy as np
import pandas as pd
from Bio.Seq import reverse_complement
from asv_seq.shared import InputError
from asv_seq import params

merger_columns = ['sequence', 'abundance', 'forward', 'reverse', 'nmatch', 'nmismatch', 'overlap', 'accept', 'reason']

def _as_array(seq):
    return np.frombuffer(seq.encode('ascii'), dtype=np.uint8)

def best_overlap(forward, reverse, min_overlap=params.min_overlap, mismatch_penalty=params.mismatch_penalty):
    """best_overlap(forward, reverse-complemented reverse) -> (offset, overlap, nmatch, nmismatch)

`offset` is the position of the reverse sequence's first base in forward
coordinates (negative if the reverse read extends past the start of the forward
read). Returns None if no placement overlaps by at least `min_overlap`.
"""
    f, r = _as_array(forward), _as_array(reverse)
    lf, lr = len(f), len(r)
    best, best_key = None, None
    for offset in range(min_overlap - lr, lf - min_overlap + 1):
        start, end = max(0, offset), min(lf, offset + lr)
        overlap = end - start
        if overlap < min_overlap:
            continue
        nmatch = int((f[start:end] == r[start-offset:end-offset]).sum())
        nmismatch = overlap - nmatch
        key = (nmatch - mismatch_penalty*nmismatch, overlap, -abs(offset))
        if best_key is None or key > best_key:
            best, best_key = (offset, overlap, nmatch, nmismatch), key
    return best

def merge_sequences(forward, reverse, offset, forward_quality=None, reverse_quality=None,
                    lenient=params.lenient, trim_overhang=params.trim_overhang):
    """Builds the merged sequence of a forward & reverse-complemented reverse sequence
placed at `offset`. Overlapping positions take the forward base, unless `lenient`
and the reverse base has a higher quality score."""
    lf, lr = len(forward), len(reverse)
    start = 0 if trim_overhang else min(0, offset)
    end = offset + lr if trim_overhang else max(lf, offset + lr)
    merged = []
    for i in range(start, end):
        in_f, in_r = 0 <= i < lf, 0 <= i - offset < lr
        if in_f and in_r:
            f_base, r_base = forward[i], reverse[i - offset]
            if (f_base != r_base and lenient and forward_quality is not None and
                    reverse_quality[i - offset] > forward_quality[i]):
                merged.append(r_base)
            else:
                merged.append(f_base)
        else:
            merged.append(forward[i] if in_f else reverse[i - offset])
    return ''.join(merged)

def merge_pairs(forward, reverse, min_overlap=params.min_overlap, max_mismatch=params.max_mismatch,
                mismatch_penalty=params.mismatch_penalty, lenient=params.lenient,
                trim_overhang=params.trim_overhang, just_concatenate=params.just_concatenate):
    """merge_pairs(forward Partition, reverse Partition) -> mergers pd.DataFrame

The partitions must derive from the mates of the same read pairs, in the same
order (see asv_seq.fastq.pair_reads).

Parameters:
-----------
min_overlap : Shortest acceptable overlap (default: 12).

max_mismatch : Mismatches tolerated within the overlap in `lenient` mode;
    otherwise the overlap must be identical.

mismatch_penalty : Penalty of a mismatch when scoring overlaps (default: 64).

trim_overhang : Trim bases of either read that extend past the start of the
    other.

just_concatenate : Do not overlap reads; join the forward center, 10 Ns and the
    reverse-complemented reverse center.
"""
    F, R = forward.read_assignment, reverse.read_assignment
    if len(F) != len(R):
        raise InputError("Cannot merge {:} forward reads with {:} reverse reads".format(len(F), len(R)), sample=forward.sample)
    if len(F) == 0:
        return pd.DataFrame({column:[] for column in merger_columns})
    combos, abundance = np.unique(np.vstack((F, R)).T, axis=0, return_counts=True)
    tolerance = max_mismatch if lenient else 0
    rows = []
    for (i, j), n in zip(combos, abundance):
        f = forward.centers[i]
        r = reverse_complement(reverse.centers[j])
        row = dict(abundance=int(n), forward=int(i), reverse=int(j))
        if just_concatenate:
            rows.append(dict(row, sequence=f + params.concatenation_spacer + r, nmatch=0, nmismatch=0, overlap=0, accept=True, reason=''))
            continue
        alignment = best_overlap(f, r, min_overlap, mismatch_penalty)
        if alignment is None:
            rows.append(dict(row, sequence='', nmatch=0, nmismatch=0, overlap=0, accept=False, reason='overlap'))
            continue
        offset, overlap, nmatch, nmismatch = alignment
        accept = nmismatch <= tolerance
        sequence = merge_sequences(f, r, offset, forward.center_quality[i], reverse.center_quality[j][::-1],
                                   lenient=lenient, trim_overhang=trim_overhang) if accept else ''
        rows.append(dict(row, sequence=sequence, nmatch=nmatch, nmismatch=nmismatch, overlap=overlap,
                         accept=accept, reason='' if accept else 'mismatch'))
    mergers = pd.DataFrame(rows)[merger_columns]
    return mergers.sort_values(['abundance', 'forward', 'reverse'], ascending=[False, True, True], kind='mergesort').reset_index(drop=True)

def merge_summary(mergers):
    """pd.Series of read pairs, merged pairs & dropped (rejected) pairs."""
    pairs = int(mergers['abundance'].sum())
    merged = int(mergers.loc[mergers['accept'].astype(bool), 'abundance'].sum())
    return pd.Series({'pairs':pairs, 'merged':merged, 'dropped':pairs - merged})
