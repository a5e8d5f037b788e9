"""Quality-conditioned model of sequencing error, and its self-consistent
estimation from the reads themselves.

An ErrorModel holds the probability that a true (center) nucleotide is read as 
each nucleotide, given the PHRED score of the read position. The 16 transitions
are labelled 'A2A', 'A2C', ... 'T2T' (true base, then read base) and the rates
from each true base sum to one at every quality score, i.e. each row block is
P(read base | true base, Q). This is the conditional the abundance p-values
need; rates are not normalized per observed base.

learn_errors alternates between denoising a sample of the reads (asv_seq.dada)
and re-estimating the error rates from the resulting partition, until the rates
stop changing. 
"""
import warnings
from collections import namedtuple
import numpy as np
import pandas as pd
from sklearn.isotonic import IsotonicRegression
from asv_seq.shared import QualityDataGap, ConvergenceWarning, LearnError
from asv_seq.fastq import phred_to_error
from asv_seq import params

nucleotides = list(params.nucleotides)
transitions = ['{:}2{:}'.format(true, read) for true in nucleotides for read in nucleotides]
self_transitions = [4*i + i for i in range(4)]

# Reads encoded as integers; N (& anything else) is 4.
_encoder = np.full(256, 4, dtype=np.int8)
for i, nuc in enumerate(params.nucleotides):
    _encoder[ord(nuc)] = i
    _encoder[ord(nuc.lower())] = i

def encode(seq):
    return _encoder[np.frombuffer(seq.encode('ascii'), dtype=np.uint8)]

class ErrorModel(object):
    """Matrix of transition probabilities (16 transitions x PHRED scores).

rates : np.array with shape (16, max_PHRED + 1).

covered : boolean np.array; PHRED scores that were observed when the model was 
    estimated. Lookups of uncovered scores use the nearest covered score and
    emit a QualityDataGap warning, once per model for each uncovered score.

tallies : np.array of the observed transition counts the model was fit to (or 
    None).
"""
    def __init__(self, rates, covered=None, tallies=None, initial=False):
        self.rates = np.asarray(rates, dtype=float)
        assert self.rates.shape[0] == 16, "An ErrorModel has 16 rows (transitions)."
        self.covered = np.ones(self.rates.shape[1], dtype=bool) if covered is None else np.asarray(covered, dtype=bool)
        self.tallies = tallies
        self.initial = initial
        with np.errstate(divide='ignore'):
            self.log_rates = np.log(self.rates)
        self._nearest = self._nearest_covered()
        self._reported_gaps = set()

    @property
    def max_PHRED(self):
        return self.rates.shape[1] - 1

    def _nearest_covered(self):
        Q = np.arange(self.rates.shape[1])
        covered = np.flatnonzero(self.covered)
        if len(covered) == 0:
            return Q
        return covered[np.abs(Q[:, None] - covered[None, :]).argmin(axis=1)]

    def column_index(self, Q):
        """Column of the model to use for each PHRED score in Q (rounded)."""
        Q = np.rint(np.asarray(Q, dtype=float)).astype(np.int64)
        clipped = Q.clip(0, self.max_PHRED)
        columns = self._nearest[clipped]
        gaps = (clipped != Q) | (columns != clipped)
        new = set(Q[gaps].tolist()) - self._reported_gaps
        if new:
            self._reported_gaps |= new
            warnings.warn("PHRED score(s) {:} are not covered by the error model; used nearest covered score(s) {:}.".format(
                sorted(new), sorted(set(columns[np.isin(Q, list(new))].tolist()))), QualityDataGap, stacklevel=2)
        return columns

    def log_lambda(self, center, seqs, quals):
        """Log-probability that each read in `seqs` (encoded, shape n x L) with 
mean qualities `quals` was produced from `center` (encoded, length L). Positions
with an N in either sequence contribute nothing.
"""
        columns = self.column_index(quals)
        known = (seqs < 4) & (center[None, :] < 4)
        rows = np.where(known, 4*center[None, :] + seqs, 0)
        terms = np.where(known, self.log_rates[rows, columns], 0.)
        return terms.sum(axis=1)

    def max_delta(self, other):
        return np.abs(self.rates - other.rates).max()

    def to_frame(self):
        df = pd.DataFrame(self.rates, index=pd.Index(transitions, name='Transition'), columns=np.arange(self.rates.shape[1]))
        df.columns.name = 'PHRED'
        return df

    def tally_frame(self):
        if self.tallies is None:
            return None
        df = pd.DataFrame(self.tallies, index=pd.Index(transitions, name='Transition'), columns=np.arange(self.tallies.shape[1]))
        df.columns.name = 'PHRED'
        return df

    def to_csv(self, filename):
        df = self.to_frame()
        df.loc['covered'] = self.covered.astype(float)
        df.to_csv(filename)

    @classmethod
    def from_csv(cls, filename):
        df = pd.read_csv(filename, index_col=0)
        covered = df.loc['covered'].values.astype(bool) if 'covered' in df.index else None
        return cls(df.loc[transitions].values, covered=covered)

    @classmethod
    def maximal(cls, max_PHRED=params.max_PHRED):
        """Every transition has probability one: the pessimistic starting point of learn_errors."""
        return cls(np.ones((16, max_PHRED+1)), initial=True)

    @classmethod
    def nominal(cls, max_PHRED=params.max_PHRED):
        """Error rates taken at face-value from the PHRED definition (errors split evenly)."""
        err = phred_to_error(np.arange(max_PHRED+1)).clip(max=0.75)
        rates = np.tile(err/3, (16, 1))
        rates[self_transitions] = 1 - err
        return cls(rates)

def tally_transitions(partition, max_PHRED=params.max_PHRED):
    """Counts (true base, read base, PHRED) transitions from a Partition. 

Every read is compared to the center of its cluster at each aligned position, 
weighted by abundance. Reads of a different length than their center, and 
positions with an N, are not tallied.
"""
    counts = np.zeros((16, max_PHRED+1))
    derep = partition.derep
    for u, cluster in enumerate(partition.assignment):
        unique = derep[u]
        center = partition.centers[cluster]
        if len(unique.sequence) != len(center):
            continue
        c, s = encode(center), encode(unique.sequence)
        Q = np.rint(unique.quality).astype(np.int64).clip(0, max_PHRED)
        known = (c < 4) & (s < 4)
        np.add.at(counts, (4*c[known] + s[known], Q[known]), unique.abundance)
    return counts

def fit_error_rates(counts, pseudocount=params.pseudocount, floor=params.error_floor, ceiling=params.error_ceiling):
    """fit_error_rates(transition tallies) -> ErrorModel

Tallies are normalized per true-base/PHRED score with Laplace (pseudocount) 
smoothing, then each error transition is fit in log10-space by a weighted 
isotonic regression that is non-increasing in PHRED score. Scores with no 
observations are extrapolated from the nearest observed scores. Self-transitions
are whatever probability remains.
"""
    counts = np.asarray(counts, dtype=float)
    Q = np.arange(counts.shape[1])
    rates = np.zeros_like(counts)
    covered = counts.sum(axis=0) > 0
    for i in range(4):
        block = counts[4*i:4*i+4]
        totals = block.sum(axis=0)
        observed = totals > 0
        for j in range(4):
            if i == j:
                continue
            row = 4*i + j
            if observed.sum() == 0:
                rates[row] = ceiling
                continue
            raw = (block[j] + pseudocount)/(totals + 4*pseudocount)
            iso = IsotonicRegression(increasing=False, out_of_bounds='clip')
            iso.fit(Q[observed], np.log10(raw[observed]), sample_weight=totals[observed])
            rates[row] = np.power(10., iso.predict(Q)).clip(floor, ceiling)
        rates[4*i + i] = 1 - rates[[4*i + j for j in range(4) if j != i]].sum(axis=0)
    return ErrorModel(rates, covered=covered, tallies=counts)

LearnResult = namedtuple('LearnResult', ['model', 'converged', 'iterations', 'deltas', 'nreads', 'nbases'])

def select_for_learning(dereps, nbases=params.nbases, min_len=params.min_len):
    """Dereps are used in order until their total bases reach `nbases`. Unique 
sequences shorter than `min_len` are not used."""
    from asv_seq.derep import Derep
    selected, reads, bases = [], 0, 0
    for derep in dereps:
        keep = [u for u in derep if len(u.sequence) >= min_len]
        if not keep:
            continue
        selected.append(Derep(keep, np.array([], dtype=np.int64), sample=derep.sample))
        reads += sum(u.abundance for u in keep)
        bases += sum(u.abundance*len(u.sequence) for u in keep)
        if bases >= nbases:
            break
    return selected, reads, bases

def learn_errors(dereps, nbases=params.nbases, max_consist=params.max_consist, 
                 threshold=params.convergence_threshold, min_len=params.min_len,
                 pseudocount=params.pseudocount, cancel=None, map=map, **dada_kargs):
    """Self-consistent estimation of the ErrorModel from dereplicated reads.

Parameters:
-----------
dereps : Derep objects of one read direction (typically one per sample).

nbases : Reads are drawn (whole samples at a time) until this many nucleotides 
    are used (default: 1e8).

max_consist : Maximum number of denoise/re-estimate iterations (default: 10).

threshold : Iteration stops once no error rate changes by more than this 
    (default: 1e-6). 

cancel : threading.Event (or anything with is_set()); checked between 
    iterations. If set, the current estimate is returned unconverged. 

map : map function used to denoise samples within an iteration (e.g. 
    asv_seq.pmap.pmap).

Additional keyword arguments are passed to asv_seq.dada.denoise. 

Returns LearnResult(model, converged, iterations, deltas, nreads, nbases). Raises 
LearnError if there are no usable reads. 
"""
    from functools import partial
    from asv_seq.dada import denoise
    selected, nreads, used_bases = select_for_learning(dereps, nbases, min_len)
    if not selected:
        raise LearnError("No reads of at least {:} nts are available to learn the error model.".format(min_len))
    max_PHRED = max(params.max_PHRED, max(int(np.ceil(u.quality.max())) for d in selected for u in d if len(u.quality)))
    model = ErrorModel.maximal(max_PHRED)
    deltas = []
    converged = False
    for _ in range(max_consist):
        if cancel is not None and cancel.is_set():
            break
        # The maximal model only permits one cluster: the most abundant sequence.
        kargs = dict(dada_kargs, max_clusters=1) if model.initial else dada_kargs
        partitions = list(map(partial(denoise, model=model, **kargs), selected))
        counts = sum(tally_transitions(partition, max_PHRED) for partition in partitions)
        new_model = fit_error_rates(counts, pseudocount=pseudocount)
        deltas.append(new_model.max_delta(model))
        model = new_model
        if deltas[-1] < threshold:
            converged = True
            break
    if not converged:
        warnings.warn("Error model did not converge after {:} iteration(s) (last change: {:.3g}).".format(
            len(deltas), deltas[-1] if deltas else float('nan')), ConvergenceWarning)
    if model.initial:
        raise LearnError("Error learning was cancelled before the first iteration completed.")
    return LearnResult(model, converged, len(deltas), deltas, nreads, used_bases)
