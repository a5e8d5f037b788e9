"""Dereplication: collapses identical reads into unique sequences.

Each UniqueSequence records its abundance, the indices of the reads it was built
from, and the mean PHRED score at every position (the representative quality
vector used by the error model & denoiser). 
"""
import numpy as np
import pandas as pd
from collections import namedtuple

UniqueSequence = namedtuple('UniqueSequence', ['sequence', 'abundance', 'reads', 'quality'])

class Derep(object):
    """Dereplicated reads of one sample & direction.

uniques : list of UniqueSequence, by descending abundance (ties: first-seen).

map : np.array mapping every input read index to its index in `uniques`.
"""
    def __init__(self, uniques, read_map, sample=None):
        self.uniques = uniques
        self.map = read_map
        self.sample = sample

    def __len__(self):
        return len(self.uniques)

    def __iter__(self):
        return iter(self.uniques)

    def __getitem__(self, i):
        return self.uniques[i]

    @property
    def sequences(self):
        return [u.sequence for u in self.uniques]

    @property
    def abundances(self):
        return np.array([u.abundance for u in self.uniques], dtype=np.int64)

    @property
    def reads(self):
        return int(self.abundances.sum())

    def to_series(self):
        return pd.Series(self.abundances, index=pd.Index(self.sequences, name='sequence'), name='abundance')

def dereplicate(reads, abundances=None, sample=None):
    """dereplicate(reads) -> Derep

Sequences are compared by exact (case-insensitive) string identity; ambiguous 
bases are not expanded. `reads` may be anything with `sequence` & `quality` 
attributes, including UniqueSequences, in which case `abundances` should weight 
each entry. Memory scales with the number of distinct sequences.
"""
    if abundances is None:
        abundances = np.ones(len(reads), dtype=np.int64)
    first_seen = dict()
    counts, quality_sums, members = [], [], []
    read_map = np.empty(len(reads), dtype=np.int64)
    for i, (read, n) in enumerate(zip(reads, abundances)):
        seq = read.sequence.upper()
        ix = first_seen.get(seq)
        if ix is None:
            ix = first_seen[seq] = len(counts)
            counts.append(0)
            quality_sums.append(np.zeros(len(seq)))
            members.append([])
        counts[ix] += n
        quality_sums[ix] += n*np.asarray(read.quality, dtype=float)
        members[ix].append(i)
        read_map[i] = ix
    
    counts = np.array(counts, dtype=np.int64)
    order = np.argsort(-counts, kind='stable')      # stable sort retains first-seen order of ties
    rank = np.empty_like(order)
    rank[order] = np.arange(len(order))
    sequences = list(first_seen.keys())
    uniques = [UniqueSequence(sequences[ix], int(counts[ix]), members[ix], quality_sums[ix]/counts[ix]) for ix in order]
    return Derep(uniques, rank[read_map] if len(reads) else read_map, sample=sample)

def derep_fastq(filename, sample=None):
    from asv_seq.fastq import read_fastq
    return dereplicate(read_fastq(filename, sample), sample=sample)
