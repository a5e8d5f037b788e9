import threading
import warnings
import numpy as np
import pytest
from asv_seq.shared import QualityDataGap, LearnError
from asv_seq.fastq import Read
from asv_seq.derep import dereplicate
from asv_seq.dada import denoise
from asv_seq.error_model import (ErrorModel, transitions, encode, tally_transitions, fit_error_rates,
                                 learn_errors, select_for_learning)
from conftest import simulate_reads

def row_sums(model):
    return np.array([model.rates[4*i:4*i+4].sum(axis=0) for i in range(4)])

def test_transitions():
    assert len(transitions) == 16
    assert transitions[:5] == ['A2A', 'A2C', 'A2G', 'A2T', 'C2A']
    assert encode('ACGTNa').tolist() == [0, 1, 2, 3, 4, 0]

def test_nominal(nominal_model):
    np.testing.assert_allclose(row_sums(nominal_model), 1)
    assert nominal_model.to_frame().loc['A2C', 30] == pytest.approx(0.001/3)
    assert nominal_model.to_frame().loc['G2G', 30] == pytest.approx(0.999)

def test_quality_gap():
    covered = np.zeros(63, dtype=bool)
    covered[[20, 30]] = True
    model = ErrorModel(ErrorModel.nominal().rates, covered=covered)
    with pytest.warns(QualityDataGap):
        columns = model.column_index([24, 26, 40, 70])
    assert columns.tolist() == [20, 30, 30, 30]
    with warnings.catch_warnings():
        warnings.simplefilter("error")
        assert model.column_index([20, 30]).tolist() == [20, 30]
        assert model.column_index([24, 40]).tolist() == [20, 30]
    with pytest.warns(QualityDataGap, match=r"\[10\]"):
        model.column_index([10, 24])

def test_csv(tmp_path, nominal_model):
    filename = tmp_path / 'model.csv'
    nominal_model.to_csv(filename)
    model = ErrorModel.from_csv(filename)
    np.testing.assert_allclose(model.rates, nominal_model.rates)
    assert model.covered.all()

def test_fit_error_rates():
    counts = np.zeros((16, 41))
    for i in range(4):
        counts[4*i + i, 10:41] = 10000
        for j in range(4):
            if i != j:
                counts[4*i + j, 10:41] = np.linspace(300, 1, 31).round()
    model = fit_error_rates(counts)
    np.testing.assert_allclose(row_sums(model), 1)
    errors = model.rates[[4*i + j for i in range(4) for j in range(4) if i != j]]
    assert (np.diff(errors, axis=1) <= 1e-12).all()       # non-increasing in quality score
    assert (errors >= 1e-7).all() and (errors <= 0.25).all()
    assert not model.covered[:10].any() and model.covered[10:].all()
    assert model.tally_frame().loc['A2C', 10] == 300

def test_tally_transitions(two_truths, nominal_model):
    truth = two_truths[0]
    variant = truth[:10] + ('A' if truth[10] != 'A' else 'C') + truth[11:]
    reads = [Read(truth, np.full(100, 30), None, str(i)) for i in range(9)] + [Read(variant, np.full(100, 30), None, '9')]
    partition = denoise(dereplicate(reads), nominal_model)
    counts = tally_transitions(partition)
    assert counts.sum() == 1000
    true_base, read_base = 'ACGT'.index(truth[10]), 'ACGT'.index(variant[10])
    assert counts[4*true_base + read_base, 30] == 1
    assert counts[:, :30].sum() == 0

def test_select_for_learning(rng, two_truths):
    dereps = [dereplicate(simulate_reads(two_truths, (20, 20), rng, sample=s)) for s in 'ABC']
    selected, reads, bases = select_for_learning(dereps, nbases=5000)
    assert len(selected) == 2
    assert reads == 80 and bases == 8000

def test_learn_errors(rng, two_truths):
    dereps = [dereplicate(simulate_reads(two_truths, (600, 400), rng, sample=s)) for s in 'AB']
    result = learn_errors(dereps)
    assert not result.model.initial
    assert 1 <= result.iterations <= 10
    assert len(result.deltas) == result.iterations
    assert result.nreads == 2000
    np.testing.assert_allclose(row_sums(result.model), 1)
    assert result.model.to_frame().loc['A2C', 30] < 0.01
    assert result.model.covered[30] and not result.model.covered[20]

def test_learn_errors_failures(rng, two_truths):
    short = [dereplicate([Read(10*'A', np.full(10, 30), None, 'r')])]
    with pytest.raises(LearnError):
        learn_errors(short)
    cancel = threading.Event()
    cancel.set()
    with pytest.raises(LearnError, match='cancelled'):
        learn_errors([dereplicate(simulate_reads(two_truths, (10, 10), rng))], cancel=cancel)
