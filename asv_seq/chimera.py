"""De novo removal of bimeras: sequences that are an exact left segment of one
more-abundant sequence joined to the right segment of another.

Candidates are examined by descending total abundance, so that every potential
parent has already been confirmed non-chimeric when a candidate is tested. The
most abundant sequence of a table has no possible parents & is never removed.

Methods:
--------
consensus : each sample votes on each sequence it contains, using that sample's
    abundances; a sequence is removed if flagged in a sufficient fraction of
    the samples containing it.

per-sample : a sequence is removed from each sample in which it is flagged;
    columns left empty are dropped.

pooled : abundances are summed across samples and the table is tested as if
    it were one sample.
"""
import warnings
from collections import namedtuple
import numpy as np
import pandas as pd
from asv_seq.shared import ChimeraAmbiguous
from asv_seq.seqtab import SequenceTable
from asv_seq import params

Bimera = namedtuple('Bimera', ['left', 'right', 'breakpoint', 'one_off', 'ambiguous'])
BimeraResult = namedtuple('BimeraResult', ['table', 'calls', 'retained'])

call_columns = ['sequence', 'abundance', 'nsam', 'nflag', 'chimeric', 'left', 'right', 'ambiguous']

def _as_array(seq):
    return np.frombuffer(seq.encode('ascii'), dtype=np.uint8)

def _prefix_matches(a, b):
    """Length of the common prefix of a & b, and its length if one mismatch is allowed."""
    n = min(len(a), len(b))
    mismatches = np.flatnonzero(a[:n] != b[:n])
    exact = mismatches[0] if len(mismatches) > 0 else n
    one_off = mismatches[1] if len(mismatches) > 1 else n
    return int(exact), int(one_off)

def is_bimera(sequence, parents, abundances=None, allow_one_off=params.allow_one_off):
    """is_bimera(sequence, [parent sequences]) -> Bimera or None

A bimera is the left part of one parent followed by the right part of another,
with no mismatches (or, with `allow_one_off`, a single mismatch, provided the
sequence is not itself one mismatch from a parent). The breakpoint always lies
strictly inside the sequence: a sequence that matches one parent over its
whole length, such as a truncated copy, is not a bimera. When several parent pairs
explain the sequence, the pair with the greatest combined abundance (then the
earliest pair in `parents`) is reported and the call is marked ambiguous.
"""
    parents = list(parents)
    if len(parents) < 2:
        return None
    abundances = np.ones(len(parents)) if abundances is None else np.asarray(abundances, dtype=float)
    s = _as_array(sequence)
    L = len(s)
    left, left1, right, right1 = (np.zeros(len(parents), dtype=np.int64) for _ in range(4))
    for k, parent in enumerate(parents):
        p = _as_array(parent)
        left[k], left1[k] = _prefix_matches(s, p)
        right[k], right1[k] = _prefix_matches(s[::-1], p[::-1])
        # Identical to one parent, up to end gaps: a length variant, not a join.
        if left[k] >= L or right[k] >= L:
            return None
    distinct = ~np.eye(len(parents), dtype=bool)
    valid = (left[:, None] + right[None, :] >= L) & distinct
    one_off = False
    if not valid.any() and allow_one_off:
        if (left1 >= L).any() or (right1 >= L).any():
            return None
        valid = ((left1[:, None] + right[None, :] >= L) | (left[:, None] + right1[None, :] >= L)) & distinct
        one_off = True
    if not valid.any():
        return None
    A, B = np.nonzero(valid)
    best = np.lexsort((B, A, -(abundances[A] + abundances[B])))[0]
    a, b = int(A[best]), int(B[best])
    breakpoint = L - int(max(right[b], right1[b]) if one_off else right[b])
    return Bimera(a, b, breakpoint, one_off, len(A) > 1)

def _flag(counts, candidate, confirmed, sequences, min_fold, min_parent_abundance, allow_one_off, excluded=None):
    """Tests one column of one abundance vector against the confirmed columns
(less any `excluded` in this vector)."""
    n = counts[candidate]
    if n <= 0:
        return None
    eligible = [k for k in confirmed if counts[k] >= min_fold*n and counts[k] >= min_parent_abundance
                and (excluded is None or not excluded[k])]
    if len(eligible) < 2:
        return None
    call = is_bimera(sequences[candidate], [sequences[k] for k in eligible], counts[eligible], allow_one_off)
    if call is None:
        return None
    return call._replace(left=eligible[call.left], right=eligible[call.right])

def remove_bimera_denovo(table, method=params.chimera_method, min_fold=params.min_fold_parent_over_abundance,
                         min_parent_abundance=params.min_parent_abundance, min_sample_fraction=params.min_sample_fraction,
                         ignore_n_negatives=params.ignore_n_negatives, allow_one_off=params.allow_one_off,
                         ambiguity_warning_rate=params.ambiguity_warning_rate):
    """remove_bimera_denovo(SequenceTable) -> BimeraResult(table, calls, retained)

Parameters:
-----------
method : 'consensus', 'per-sample' or 'pooled' (see module docstring).

min_fold : Parents must be at least this many times more abundant than the
    candidate (default: 1.5).

min_parent_abundance : Parents must have at least this many reads (default: 2).

min_sample_fraction, ignore_n_negatives : A sequence is removed by consensus if
    flagged in every sample containing it, or if flagged in at least
    `min_sample_fraction` of those samples after disregarding
    `ignore_n_negatives` non-flagging samples.

allow_one_off : Also flag sequences one mismatch away from a bimera.

`calls` is a pd.DataFrame with one row per sequence of the input table;
`retained` is the fraction of the table's reads that remain.
"""
    if method not in ('consensus', 'per-sample', 'pooled'):
        raise ValueError("method must be 'consensus', 'per-sample' or 'pooled', not {:}".format(method))
    counts = table.counts.toarray()
    if method == 'pooled':
        counts = counts.sum(axis=0, keepdims=True)
    totals = table.counts.toarray().sum(axis=0)
    order = np.argsort(-totals, kind='stable')
    nsam = (counts > 0).sum(axis=0)
    nflag = np.zeros(len(table), dtype=np.int64)
    flagged = np.zeros(counts.shape, dtype=bool)
    chimeric = np.zeros(len(table), dtype=bool)
    parents = [(-1, -1, False)]*len(table)

    confirmed = []
    for rank, j in enumerate(order):
        if rank > 0:
            calls = [(s, _flag(counts[s], j, confirmed, table.sequences, min_fold, min_parent_abundance, allow_one_off,
                               flagged[s] if method == 'per-sample' else None))
                        for s in range(counts.shape[0])]
            calls = [(s, call) for s, call in calls if call is not None]
            for s, call in calls:
                flagged[s, j] = True
            nflag[j] = len(calls)
            if calls:
                # Report the call from the sample where the candidate is most abundant.
                s, call = max(calls, key=lambda x: counts[x[0], j])
                parents[j] = (call.left, call.right, call.ambiguous)
            if method == 'per-sample':
                chimeric[j] = nflag[j] == nsam[j] and nsam[j] > 0
            else:
                chimeric[j] = nflag[j] > 0 and (nflag[j] >= nsam[j] or
                                                nflag[j] >= (nsam[j] - ignore_n_negatives)*min_sample_fraction)
        # In per-sample mode a sequence remains a parent in the samples that did not flag it.
        if method == 'per-sample' or not chimeric[j]:
            confirmed.append(j)

    calls = pd.DataFrame({
        'sequence' : table.sequences,
        'abundance': totals,
        'nsam'     : nsam,
        'nflag'    : nflag,
        'chimeric' : chimeric,
        'left'     : [table.sequences[p[0]] if p[0] >= 0 else '' for p in parents],
        'right'    : [table.sequences[p[1]] if p[1] >= 0 else '' for p in parents],
        'ambiguous': [p[2] for p in parents]})[call_columns]

    if method == 'per-sample':
        kept_counts = np.where(flagged, 0, table.counts.toarray())
        keep = kept_counts.sum(axis=0) > 0
        filtered = SequenceTable(kept_counts[:, keep], table.samples, [s for s, k in zip(table.sequences, keep) if k])
    else:
        filtered = table.select(np.flatnonzero(~chimeric))

    flagged_calls = calls.loc[calls['nflag'] > 0]
    if len(flagged_calls) and flagged_calls['ambiguous'].mean() > ambiguity_warning_rate:
        warnings.warn("{:.0%} of bimera calls had several equally valid parent pairs; the most abundant pair was reported.".format(
            flagged_calls['ambiguous'].mean()), ChimeraAmbiguous)
    total = totals.sum()
    retained = filtered.counts.sum()/total if total > 0 else 1.
    return BimeraResult(filtered, calls, retained)
