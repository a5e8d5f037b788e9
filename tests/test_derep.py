import numpy as np
from asv_seq.fastq import Read, write_fastq
from asv_seq.derep import dereplicate, derep_fastq
from conftest import simulate_reads

def read(seq, Q):
    return Read(seq, np.array(Q), None, 'r')

def test_dereplicate():
    reads = [read('ACGT', [30, 30, 30, 30]),
             read('GGGG', [20, 20, 20, 20]),
             read('acgt', [10, 20, 30, 40]),
             read('TTTT', [30, 30, 30, 30])]
    derep = dereplicate(reads, sample='S')
    assert derep.sequences == ['ACGT', 'GGGG', 'TTTT']     # ties keep first-seen order
    assert derep.abundances.tolist() == [2, 1, 1]
    assert derep.reads == 4
    assert derep.sample == 'S'
    assert derep[0].reads == [0, 2]
    np.testing.assert_allclose(derep[0].quality, [20, 25, 30, 35])
    assert derep.map.tolist() == [0, 1, 0, 2]
    assert derep.to_series()['ACGT'] == 2

def test_read_map(rng, two_truths):
    reads = simulate_reads(two_truths, (50, 30), rng)
    derep = dereplicate(reads)
    assert all(derep[derep.map[i]].sequence == r.sequence for i, r in enumerate(reads))
    assert (np.diff(derep.abundances) <= 0).all()
    assert derep.abundances.sum() == len(reads)

def test_idempotent(rng, two_truths):
    derep = dereplicate(simulate_reads(two_truths, (50, 30), rng))
    again = dereplicate(list(derep), derep.abundances)
    assert again.sequences == derep.sequences
    assert again.abundances.tolist() == derep.abundances.tolist()
    for a, b in zip(again, derep):
        np.testing.assert_allclose(a.quality, b.quality)

def test_empty():
    derep = dereplicate([])
    assert len(derep) == 0
    assert derep.reads == 0

def test_derep_fastq(tmp_path, rng, two_truths):
    reads = simulate_reads(two_truths, (20, 10), rng)
    write_fastq(reads, tmp_path / 'S.fastq')
    derep = derep_fastq(tmp_path / 'S.fastq', sample='S')
    assert derep.reads == 30
    assert derep.sample == 'S'
