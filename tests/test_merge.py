import numpy as np
import pytest
from Bio.Seq import reverse_complement
from asv_seq.shared import InputError
from asv_seq.fastq import Read
from asv_seq.derep import dereplicate
from asv_seq.dada import denoise
from asv_seq.merge import best_overlap, merge_sequences, merge_pairs, merge_summary, merger_columns
from conftest import simulate_pairs, random_sequence, mutate

def partitions(forward, reverse, model):
    return denoise(dereplicate(forward, sample='S'), model), denoise(dereplicate(reverse, sample='S'), model)

def test_best_overlap(rng):
    amplicon = random_sequence(rng, 250)
    forward, reverse = amplicon[:150], amplicon[-150:]
    assert best_overlap(forward, reverse) == (100, 50, 50, 0)
    assert best_overlap(forward, random_sequence(rng, 150))[3] > 0
    assert best_overlap(forward[:10], reverse[:10]) is None

def test_merge_sequences(rng):
    amplicon = random_sequence(rng, 250)
    forward, reverse = amplicon[:150], amplicon[-150:]
    assert merge_sequences(forward, reverse, 100) == amplicon
    assert merge_sequences(forward, reverse, 100, trim_overhang=True) == amplicon
    # Reverse read extends past the start of the forward read
    assert merge_sequences(amplicon[20:100], amplicon[:90], -20) == amplicon[:100]
    assert merge_sequences(amplicon[20:100], amplicon[:90], -20, trim_overhang=True) == amplicon[20:90]

def test_lenient_quality_vote(rng):
    amplicon = random_sequence(rng, 250)
    forward, reverse = amplicon[:150], mutate(amplicon[-150:], [20], rng)
    fq, rq = np.full(150, 30), np.full(150, 30)
    rq[20] = 38
    merged = merge_sequences(forward, reverse, 100, fq, rq, lenient=True)
    assert merged[120] == reverse[20]
    assert merge_sequences(forward, reverse, 100, fq, rq) == amplicon

def test_merge_pairs(rng, amplicons, nominal_model):
    forward, reverse = simulate_pairs(amplicons, (120, 80), rng)
    mergers = merge_pairs(*partitions(forward, reverse, nominal_model))
    assert list(mergers.columns) == merger_columns
    accepted = mergers.loc[mergers['accept']]
    assert set(accepted['sequence']) == set(amplicons)
    assert accepted.set_index('sequence')['abundance'].to_dict() == {amplicons[0]:120, amplicons[1]:80}
    for _, row in accepted.iterrows():
        assert len(row['sequence']) == 150 + 150 - row['overlap']
        assert row['overlap'] == 50 and row['nmismatch'] == 0
    summary = merge_summary(mergers)
    assert summary['pairs'] == 200 and summary['merged'] == 200 and summary['dropped'] == 0

def test_rejections(rng, amplicons, nominal_model):
    forward, _ = simulate_pairs(amplicons[:1], (50,), rng, Q=40)
    _, reverse = simulate_pairs(amplicons[1:], (50,), rng, Q=40)
    reverse = [r._replace(pair_id=f.pair_id) for f, r in zip(forward, reverse)]
    mergers = merge_pairs(*partitions(forward, reverse, nominal_model))
    assert not mergers['accept'].any()
    assert set(mergers['reason']) <= {'overlap', 'mismatch'}
    assert merge_summary(mergers)['dropped'] == 50

def test_strict_and_lenient(rng, nominal_model):
    amplicon = random_sequence(rng, 250)
    mate = reverse_complement(mutate(amplicon, [120], rng))[:150]
    forward = [Read(amplicon[:150], np.full(150, 30), 'S', str(i)) for i in range(10)]
    reverse = [Read(mate, np.full(150, 30), 'S', str(i)) for i in range(10)]
    parts = partitions(forward, reverse, nominal_model)
    strict = merge_pairs(*parts)
    assert strict['reason'].tolist() == ['mismatch']
    lenient = merge_pairs(*parts, lenient=True)
    assert lenient['accept'].tolist() == [True]
    assert lenient['sequence'].iloc[0] == amplicon

def test_just_concatenate(rng, amplicons, nominal_model):
    forward, reverse = simulate_pairs(amplicons[:1], (20,), rng, Q=40)
    mergers = merge_pairs(*partitions(forward, reverse, nominal_model), just_concatenate=True)
    row = mergers.iloc[0]
    assert row['sequence'] == amplicons[0][:150] + 10*'N' + amplicons[0][-150:]

def test_unequal_reads(rng, amplicons, nominal_model):
    forward, reverse = simulate_pairs(amplicons[:1], (20,), rng)
    with pytest.raises(InputError):
        merge_pairs(*partitions(forward, reverse[:10], nominal_model))
