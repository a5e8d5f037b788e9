"""Synthetic amplicon data for the test-suite.

Reads are simulated from known true sequences: every base is substituted with
the probability implied by its PHRED score (split evenly among the three other
nucleotides). All randomness is seeded.
"""
import numpy as np
import pytest
from Bio.Seq import reverse_complement
from asv_seq.fastq import Read, phred_to_error, write_fastq
from asv_seq.error_model import ErrorModel

NUCS = np.array(list('ACGT'))

def random_sequence(rng, length):
    return ''.join(rng.choice(NUCS, size=length))

def mutate(sequence, positions, rng):
    seq = list(sequence)
    for i in positions:
        seq[i] = rng.choice([n for n in 'ACGT' if n != seq[i]])
    return ''.join(seq)

def simulate_reads(truths, abundances, rng, Q=30, sample=None, prefix='read'):
    """Reads of each true sequence, with substitutions at the rate of PHRED score Q."""
    reads = []
    for truth, n in zip(truths, abundances):
        L = len(truth)
        errors = rng.random_sample((n, L)) < phred_to_error(Q)
        for row in errors:
            seq = mutate(truth, np.flatnonzero(row), rng) if row.any() else truth
            reads.append(Read(seq, np.full(L, Q, dtype=np.int16), sample, '{:}{:}'.format(prefix, len(reads))))
    order = rng.permutation(len(reads))
    return [reads[i]._replace(pair_id='{:}{:}'.format(prefix, j)) for j, i in enumerate(order)]

def simulate_pairs(amplicons, abundances, rng, read_length=150, Q=35, sample=None):
    """Forward & reverse mates of each amplicon."""
    fragments = [a for a, n in zip(amplicons, abundances) for _ in range(n)]
    forward, reverse = [], []
    for i, ix in enumerate(rng.permutation(len(fragments))):
        amplicon = fragments[ix]
        mates = amplicon[:read_length], reverse_complement(amplicon)[:read_length]
        for mate, out in zip(mates, (forward, reverse)):
            errors = np.flatnonzero(rng.random_sample(len(mate)) < phred_to_error(Q))
            out.append(Read(mutate(mate, errors, rng), np.full(len(mate), Q, dtype=np.int16), sample, 'M00001:1:FC:1:1:{:}:1'.format(i)))
    return forward, reverse

@pytest.fixture
def rng():
    return np.random.RandomState(42)

@pytest.fixture
def nominal_model():
    return ErrorModel.nominal()

@pytest.fixture
def two_truths(rng):
    return random_sequence(rng, 100), random_sequence(rng, 100)

@pytest.fixture
def amplicons(rng):
    return random_sequence(rng, 250), random_sequence(rng, 250)

@pytest.fixture
def fastq_pair(tmp_path, rng, amplicons):
    """One sample's forward & reverse FASTQ files."""
    forward, reverse = simulate_pairs(amplicons, (60, 40), rng, sample='S1')
    forward_file, reverse_file = tmp_path / 'forward' / 'S1.fastq', tmp_path / 'reverse' / 'S1.fastq'
    write_fastq(forward, forward_file)
    write_fastq(reverse, reverse_file)
    return forward_file, reverse_file
