"""Divisive amplicon denoising: infers the true sequences among a sample's reads.

Unique sequences are partitioned into clusters, each anchored by a center (the
inferred true sequence). Starting from a single cluster (centered on the most
abundant sequence), every unique sequence is assigned to the center most likely
to have produced it under the ErrorModel. Then the member least explicable as an
error of its center (smallest abundance p-value) becomes a new center if its
p-value is significant after a Bonferroni correction for the # of unique
sequences. Reassignment & promotion repeat until no member is significant.

Comparisons are ungapped: a unique sequence can only be an error of a center of
the same length. With `use_kmers`, pairs whose 5-mer profiles differ by more than
`kdist_cutoff` are never compared; their probability of origin is zero. Both
rules are fixed, so partitions are reproducible.

The partition is kept as an arena of cluster records plus one index array
(unique sequence -> cluster).
"""
import warnings
from collections import namedtuple
import numpy as np
import pandas as pd
from scipy.stats import poisson
from asv_seq.shared import ConvergenceWarning
from asv_seq.error_model import encode
from asv_seq import params

ClusterRecord = namedtuple('ClusterRecord', ['center', 'parent', 'birth_pval', 'birth_fold', 'birth_ham'])

cluster_columns = ['sequence', 'abundance', 'n0', 'n1', 'nunq', 'pval', 'birth_pval', 'birth_ham', 'birth_fold']

def hamming_distance(a, b):
    """Substitutions between two sequences, plus their difference in length."""
    return sum(c1 != c2 for c1, c2 in zip(a, b)) + abs(len(a) - len(b))

def kmer_counts(seq, k=params.kmer_size):
    """k-mer profile of an encoded sequence (k-mers containing N are skipped)."""
    counts = np.zeros(4**k, dtype=np.uint16)
    if len(seq) < k:
        return counts
    windows = np.lib.stride_tricks.sliding_window_view(seq, k)
    windows = windows[(windows < 4).all(axis=1)].astype(np.int64)
    codes = windows.dot(4**np.arange(k-1, -1, -1))
    counts += np.bincount(codes, minlength=4**k).astype(np.uint16)
    return counts

def abundance_pvalue(abundance, expected, detect_singletons=params.detect_singletons):
    """Probability of observing at least `abundance` reads of a sequence, if it
were only produced by errors, i.e. X ~ Poisson(expected).

Sequences are only observed if present, so the test is conditioned on X >= 1;
singletons are therefore never significant, unless `detect_singletons`, which
drops the conditioning.
"""
    abundance = np.asarray(abundance, dtype=float)
    expected = np.asarray(expected, dtype=float)
    with np.errstate(divide='ignore', invalid='ignore', over='ignore'):
        tail = poisson.sf(abundance - 1, expected)
        p = tail if detect_singletons else tail/-np.expm1(-expected)
    p = np.where(expected > 0, p, 0.)
    if not detect_singletons:
        p = np.where(abundance <= 1, 1., p)
    return np.clip(p, 0., 1.)

class _Comparer(object):
    """Computes & caches the probability that each unique sequence arose from a center."""
    def __init__(self, derep, model, use_kmers=params.use_kmers, kmer_size=params.kmer_size, kdist_cutoff=params.kdist_cutoff):
        self.model = model
        self.n = len(derep)
        self.encoded = [encode(u.sequence) for u in derep]
        lengths = np.array([len(s) for s in self.encoded])
        self.groups = {}
        for L in np.unique(lengths):
            ix = np.flatnonzero(lengths == L)
            self.groups[L] = (ix,
                              np.vstack([self.encoded[i] for i in ix]).reshape(len(ix), L),
                              np.vstack([derep[i].quality for i in ix]).reshape(len(ix), L))
        self.kmer_size = kmer_size
        self.kdist_cutoff = kdist_cutoff
        self.kmers = np.vstack([kmer_counts(s, kmer_size) for s in self.encoded]) if use_kmers else None
        self.cache = {}

    def kmer_distance(self, center, ix):
        L = len(self.encoded[center])
        if L < self.kmer_size:
            return np.zeros(len(ix))
        shared = np.minimum(self.kmers[center][None, :], self.kmers[ix]).sum(axis=1)
        return 1 - shared/(L - self.kmer_size + 1)

    def __call__(self, center):
        if center in self.cache:
            return self.cache[center]
        lam = np.zeros(self.n)
        c = self.encoded[center]
        ix, seqs, quals = self.groups[len(c)]
        if self.kmers is not None:
            close = self.kmer_distance(center, ix) <= self.kdist_cutoff
            ix, seqs, quals = ix[close], seqs[close], quals[close]
        if len(ix):
            lam[ix] = np.exp(self.model.log_lambda(c, seqs, quals))
        self.cache[center] = lam
        return lam

def _shuffle(Lambda, assignment, abundances, centers, max_shuffle=params.max_shuffle):
    """Moves every unique sequence to the center most likely to have produced it.
Ties go to the cluster with more reads, then to the older cluster."""
    K = len(Lambda)
    for _ in range(max_shuffle):
        cluster_reads = np.bincount(assignment, weights=abundances, minlength=K)
        best = Lambda.max(axis=0)
        ranked = np.where(Lambda == best[None, :], cluster_reads[:, None], -1.)
        new = ranked.argmax(axis=0)
        new[centers] = np.arange(K)
        if (new == assignment).all():
            break
        assignment = new
    return assignment

def _member_pvalues(Lambda, assignment, abundances, centers, detect_singletons):
    K, n = Lambda.shape
    cluster_reads = np.bincount(assignment, weights=abundances, minlength=K)
    expected = Lambda[assignment, np.arange(n)]*cluster_reads[assignment]
    pvals = abundance_pvalue(abundances, expected, detect_singletons)
    pvals[centers] = 1.
    return pvals, expected

def summarize_clusters(derep, assignment, centers):
    """Per-cluster abundance, n0 (reads identical to the center), n1 (reads one
substitution away) and nunq (unique sequences)."""
    abundances = derep.abundances
    K = len(centers)
    distances = np.array([hamming_distance(unique.sequence, centers[k]) for unique, k in zip(derep, assignment)])
    def tally(weights):
        return np.bincount(assignment, weights=weights, minlength=K).astype(np.int64)
    return pd.DataFrame({
        'sequence'  : centers,
        'abundance' : tally(abundances),
        'n0'        : tally(abundances*(distances == 0)),
        'n1'        : tally(abundances*(distances == 1)),
        'nunq'      : tally(None)})

class Partition(object):
    """Outcome of denoising one Derep.

derep : the dereplicated input.

assignment : np.array, unique sequence index -> cluster index. Every unique
    sequence is in exactly one cluster.

centers : list of center sequences (one per cluster).

center_quality : list of the mean quality vectors of the centers.

clusters : pd.DataFrame, one row per cluster (see cluster_columns).

converged : False if the iteration budget ran out or denoising was cancelled.
"""
    def __init__(self, derep, assignment, centers, center_quality, clusters, converged=True, iterations=0):
        self.derep = derep
        self.assignment = assignment
        self.centers = centers
        self.center_quality = center_quality
        self.clusters = clusters
        self.converged = converged
        self.iterations = iterations

    def __len__(self):
        return len(self.centers)

    @property
    def sample(self):
        return self.derep.sample

    @property
    def abundances(self):
        return self.clusters['abundance'].values

    @property
    def read_assignment(self):
        """Cluster of every read that was dereplicated."""
        return self.assignment[self.derep.map]

    def denoised(self):
        """pd.Series of cluster abundances indexed by center sequence."""
        return self.clusters.set_index('sequence')['abundance']

    def project(self, derep, assignment):
        """Restricts this (pooled) Partition to one sample's Derep. `assignment`
maps the sample's unique sequences onto this Partition's clusters."""
        used, local = np.unique(assignment, return_inverse=True)
        centers = [self.centers[k] for k in used]
        clusters = summarize_clusters(derep, local, centers)
        for column in ['pval', 'birth_pval', 'birth_ham', 'birth_fold']:
            clusters[column] = self.clusters[column].values[used]
        return Partition(derep, local, centers, [self.center_quality[k] for k in used],
                         clusters[cluster_columns], self.converged, self.iterations)

def _empty_partition(derep):
    clusters = pd.DataFrame({column:[] for column in cluster_columns})
    return Partition(derep, np.array([], dtype=np.int64), [], [], clusters)

def denoise(derep, model, omega_a=params.omega_a, use_kmers=params.use_kmers, kmer_size=params.kmer_size,
            kdist_cutoff=params.kdist_cutoff, max_clusters=params.max_clusters, max_shuffle=params.max_shuffle,
            max_promotions=params.max_promotions, detect_singletons=params.detect_singletons, cancel=None):
    """denoise(Derep, ErrorModel) -> Partition

Parameters:
-----------
omega_a : Threshold of the Bonferroni-corrected abundance p-value needed to
    promote a sequence to a new cluster center (default: 1e-40).

use_kmers, kmer_size, kdist_cutoff : k-mer screen of comparisons (see module
    docstring).

max_clusters : Stop once this many clusters exist (default: 0, i.e. unlimited).

max_shuffle : Maximum rounds of reassignment after each promotion.

max_promotions : Iteration budget. If exhausted, the partition is returned with
    converged=False and a ConvergenceWarning.

detect_singletons : Permit sequences observed once to become centers.

cancel : threading.Event (or anything with is_set()); checked before every
    promotion. If set, the current partition is returned with converged=False.
"""
    n = len(derep)
    if n == 0:
        return _empty_partition(derep)
    abundances = derep.abundances.astype(float)
    compare = _Comparer(derep, model, use_kmers, kmer_size, kdist_cutoff)
    records = [ClusterRecord(0, -1, 0., np.nan, 0)]
    Lambda = compare(0)[None, :]
    assignment = np.zeros(n, dtype=np.int64)
    converged = False
    iteration = 0
    while True:
        centers = [r.center for r in records]
        assignment = _shuffle(Lambda, assignment, abundances, centers, max_shuffle)
        if cancel is not None and cancel.is_set():
            break
        if max_clusters and len(records) >= max_clusters:
            converged = True
            break
        pvals, expected = _member_pvalues(Lambda, assignment, abundances, centers, detect_singletons)
        u = np.lexsort((np.arange(n), -abundances, pvals))[0]
        if pvals[u]*n >= omega_a:
            converged = True
            break
        if iteration >= max_promotions:
            break
        parent = assignment[u]
        records.append(ClusterRecord(u, parent, pvals[u],
                                     abundances[u]/expected[u] if expected[u] > 0 else np.inf,
                                     hamming_distance(derep[u].sequence, derep[records[parent].center].sequence)))
        Lambda = np.vstack([Lambda, compare(u)])
        assignment[u] = len(records) - 1
        iteration += 1

    if not converged:
        warnings.warn("Denoising{:} stopped after {:} promotion(s) without converging.".format(
            '' if derep.sample is None else ' of '+str(derep.sample), iteration), ConvergenceWarning)

    centers = [r.center for r in records]
    clusters = summarize_clusters(derep, assignment, [derep[c].sequence for c in centers])

    # Final p-value of each center, were it an error of the most likely other center
    K = len(records)
    cluster_reads = clusters['abundance'].values.astype(float)
    pval = np.zeros(K)
    if K > 1:
        for k, c in enumerate(centers):
            others = np.delete(np.arange(K), k)
            lam = Lambda[others, c]
            j = others[np.lexsort((others, -cluster_reads[others], -lam))[0]]
            pval[k] = abundance_pvalue(abundances[c], Lambda[j, c]*cluster_reads[j], detect_singletons)
    clusters['pval'] = pval
    clusters['birth_pval'] = [r.birth_pval for r in records]
    clusters['birth_ham'] = [r.birth_ham for r in records]
    clusters['birth_fold'] = [r.birth_fold for r in records]
    return Partition(derep, assignment, list(clusters['sequence']), [derep[c].quality for c in centers],
                     clusters[cluster_columns], converged, iteration)

def denoise_pooled(dereps, model, **kargs):
    """Denoises the unique sequences of several samples together, then projects
the shared partition back onto each sample. Returns {sample: Partition}."""
    from asv_seq.derep import dereplicate
    entries = [u for derep in dereps for u in derep]
    pooled = dereplicate(entries, [u.abundance for u in entries])
    partition = denoise(pooled, model, **kargs)
    out, offset = {}, 0
    for derep in dereps:
        local = partition.assignment[pooled.map[offset:offset+len(derep)]]
        offset += len(derep)
        out[derep.sample] = partition.project(derep, local)
    return out
