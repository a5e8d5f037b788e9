"""End-to-end amplicon pipeline: from paired FASTQ files to a chimera-free table of
sequence variants.

Samples are processed independently (and in parallel) until the sequence table
is built:

1) prepare_sample : read -> pair -> filter & trim -> dereplicate (per sample)
2) learn_errors   : one ErrorModel per read direction (all samples)
3) denoise_sample : denoise forward & reverse -> merge pairs (per sample)
4) make_sequence_table -> length filter -> remove_bimera_denovo (all samples)

A sample whose files are malformed, empty or unpaired (InputError) is logged and
excluded, while the remaining samples continue. Warnings raised while processing
a sample are collected and written to the log under the sample's name.
"""
import os
import warnings
from collections import namedtuple
from functools import partial
import numpy as np
import pandas as pd
from asv_seq.shared import InputError, LearnError, logPrint
from asv_seq.fastq import read_fastq, pair_reads, filter_pairs, write_fastq
from asv_seq.derep import dereplicate
from asv_seq.error_model import ErrorModel, learn_errors
from asv_seq.dada import denoise, denoise_pooled
from asv_seq.merge import merge_pairs
from asv_seq.seqtab import make_sequence_table, write_track
from asv_seq.chimera import remove_bimera_denovo
from asv_seq.pmap import pmap, large_iter_pmap
from asv_seq import params

SamplePair = namedtuple('SamplePair', ['sample', 'forward', 'reverse'])
SampleResult = namedtuple('SampleResult', ['sample', 'track', 'dereps', 'partitions', 'mergers', 'warnings', 'error'])
PipelineResult = namedtuple('PipelineResult', ['table', 'track', 'models', 'chimeras', 'retained', 'failed', 'cancelled'])
Caught = namedtuple('Caught', ['category', 'message'])

track_columns = ['input', 'filtered', 'denoisedF', 'denoisedR', 'merged', 'nonchim']

filter_options = ['trim_left', 'trunc_len', 'trunc_q', 'max_ee', 'max_n', 'min_len']
dada_options = ['omega_a', 'use_kmers', 'kmer_size', 'kdist_cutoff', 'max_clusters', 'max_shuffle', 'max_promotions', 'detect_singletons']
merge_options = ['min_overlap', 'max_mismatch', 'mismatch_penalty', 'lenient', 'trim_overhang', 'just_concatenate']
learn_options = ['nbases', 'max_consist', 'pseudocount']
chimera_options = ['min_parent_abundance', 'min_sample_fraction', 'ignore_n_negatives', 'allow_one_off', 'ambiguity_warning_rate']

class Config(object):
    """Options of run_pipeline. Every option defaults to its value in asv_seq.params."""
    defaults = dict({option:getattr(params, option) for option in filter_options + dada_options + merge_options + learn_options + chimera_options},
                    convergence_threshold=params.convergence_threshold,
                    chimera_method=params.chimera_method,
                    min_fold=params.min_fold_parent_over_abundance,
                    length_band=params.length_band,
                    order_by=params.order_by,
                    filter=True,
                    pool=False,
                    filtered_dir=None,
                    error_models=None,
                    output_dir='.',
                    plot=False,
                    processes=params.CPUs)

    def __init__(self, **kargs):
        unknown = set(kargs) - set(self.defaults)
        if unknown:
            raise TypeError("Unknown pipeline option(s): "+', '.join(sorted(unknown)))
        for option, default in self.defaults.items():
            setattr(self, option, kargs.get(option, default))

    def options(self, names):
        return {name:getattr(self, name) for name in names}

    def __repr__(self):
        return 'Config({:})'.format(', '.join('{:}={!r}'.format(k, getattr(self, k)) for k in self.defaults))

def find_pairs(forward_dir, reverse_dir, fastq_ext=params.fastq_handle):
    """Mates forward & reverse FASTQ files by their basename. Returns (pairs,
unmatched filenames)."""
    forward_files = {f for f in os.listdir(forward_dir) if fastq_ext in f}
    reverse_files = {f for f in os.listdir(reverse_dir) if fastq_ext in f}
    pairs = [SamplePair(f.split(fastq_ext)[0], os.path.join(forward_dir, f), os.path.join(reverse_dir, f))
                for f in sorted(forward_files & reverse_files)]
    return pairs, sorted(forward_files ^ reverse_files)

def _caught(caught):
    return [Caught(w.category, str(w.message)) for w in caught]

def prepare_sample(pair, config):
    """Reads, pairs, filters & dereplicates one sample."""
    track = dict()
    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter('always')
        try:
            forward, reverse = read_fastq(pair.forward, pair.sample), read_fastq(pair.reverse, pair.sample)
            pair_reads(forward, reverse, pair.sample, (pair.forward, pair.reverse))
            track['input'] = len(forward)
            if config.filter:
                forward, reverse = filter_pairs(forward, reverse, **config.options(filter_options))
                if config.filtered_dir is not None:
                    write_fastq(forward, os.path.join(config.filtered_dir, 'forward', os.path.basename(pair.forward)))
                    write_fastq(reverse, os.path.join(config.filtered_dir, 'reverse', os.path.basename(pair.reverse)))
            track['filtered'] = len(forward)
            if not forward:
                raise InputError("No reads passed filtering", sample=pair.sample)
            dereps = (dereplicate(forward, sample=pair.sample), dereplicate(reverse, sample=pair.sample))
            error = None
        except InputError as e:
            dereps, error = None, str(e)
    return SampleResult(pair.sample, track, dereps, None, None, _caught(caught), error)

def _merge(result, partitions, config):
    mergers = merge_pairs(*partitions, **config.options(merge_options))
    track = dict(result.track,
                 denoisedF=int(partitions[0].abundances.sum()),
                 denoisedR=int(partitions[1].abundances.sum()),
                 merged=int(mergers.loc[mergers['accept'].astype(bool), 'abundance'].sum()))
    return result._replace(track=track, partitions=partitions, mergers=mergers)

def denoise_sample(result, models, config, cancel=None):
    """Denoises both read directions of a prepared sample, then merges its pairs."""
    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter('always')
        try:
            partitions = tuple(denoise(derep, model, cancel=cancel, **config.options(dada_options))
                                    for derep, model in zip(result.dereps, models))
            result = _merge(result, partitions, config)
        except InputError as e:
            result = result._replace(error=str(e))
    return result._replace(warnings=result.warnings + _caught(caught))

def merge_sample(result, partitions, config):
    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter('always')
        try:
            result = _merge(result, partitions, config)
        except InputError as e:
            result = result._replace(error=str(e))
    return result._replace(warnings=result.warnings + _caught(caught))

def learn_direction(dereps, direction, config, Log, cancel=None):
    """Learns the ErrorModel of one read direction. If learning fails, the model
implied by the PHRED scores is used instead."""
    Log('Learning the {:} error model from {:} samples...'.format(direction, len(dereps)), True)
    mapper = partial(pmap, processes=config.processes)
    try:
        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter('always')
            result = learn_errors(dereps, threshold=config.convergence_threshold, cancel=cancel, map=mapper,
                                  min_len=config.min_len, **config.options(learn_options + dada_options))
        Log.warnings(caught, direction)
    except LearnError as e:
        Log('Could not learn the {:} error model ({:}); using nominal PHRED error rates.'.format(direction, e), True)
        return ErrorModel.nominal()
    Log('{:} error model {:} after {:} iteration(s), using {:,} reads ({:,} nts).'.format(
        direction.capitalize(), 'converged' if result.converged else 'did NOT converge', result.iterations, result.nreads, result.nbases))
    return result.model

def _log_failures(results, failed, Log):
    kept = []
    for result in results:
        Log.warnings(result.warnings, result.sample)
        if result.error is None:
            kept.append(result)
        else:
            failed[result.sample] = result.error
            Log('Excluding sample {:}: {:}'.format(result.sample, result.error), True)
    return kept

def run_pipeline(config, pairs, Log=None, cancel=None):
    """run_pipeline(Config, [SamplePair]) -> PipelineResult

Writes the sequence table, sequence catalog, read-tracking table & error models
to config.output_dir. `cancel` (a threading.Event) is checked between stages and
by the error-model learner; it is also forwarded to the denoiser when samples are
processed in a single process. A cancelled run returns whatever was completed,
with cancelled=True.
"""
    if isinstance(config, dict):
        config = Config(**config)
    os.makedirs(config.output_dir, exist_ok=True)
    if Log is None:
        Log = logPrint(filename=os.path.join(config.output_dir, 'asv_seq.LOG'), verbose=False)
    samples = [pair.sample for pair in pairs]
    if len(set(samples)) != len(samples):
        raise ValueError("Sample names must be unique.")
    failed = dict()
    serial = config.processes <= 1
    mapper = partial(large_iter_pmap, processes=config.processes) if not serial else (lambda f, it: list(map(f, it)))
    cancelled = lambda: cancel is not None and cancel.is_set()

    def finish(results, models=None, table=None, chimeras=None, retained=None):
        track = pd.DataFrame([result.track for result in results], index=pd.Index([r.sample for r in results], name='sample'),
                                columns=track_columns)
        return PipelineResult(table, track, models, chimeras, retained, failed, cancelled())

    Log('Preparing {:} samples'.format(len(pairs)), True, header=True)
    results = _log_failures(mapper(partial(prepare_sample, config=config), pairs), failed, Log)
    if not results:
        Log('No samples could be processed.', True)
        return finish(results)
    if cancelled():
        return finish(results)

    if config.error_models is not None:
        models = tuple(ErrorModel.from_csv(f) for f in config.error_models)
    else:
        models = tuple(learn_direction([r.dereps[i] for r in results], direction, config, Log, cancel)
                            for i, direction in enumerate(['forward', 'reverse']))
        for model, direction in zip(models, ['forward', 'reverse']):
            model.to_csv(os.path.join(config.output_dir, params.error_model_file.format(direction=direction)))
    if config.plot:
        from asv_seq.graphs import plot_errors
        for model, direction in zip(models, ['forward', 'reverse']):
            fig = plot_errors(model)
            fig.savefig(os.path.join(config.output_dir, 'error_model_{:}.pdf'.format(direction)))
    if cancelled():
        return finish(results, models)

    Log('Denoising {:} samples{:}'.format(len(results), ' (pooled)' if config.pool else ''), True, header=True)
    if config.pool:
        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter('always')
            pooled = [denoise_pooled([r.dereps[i] for r in results], model, cancel=cancel, **config.options(dada_options))
                        for i, model in enumerate(models)]
        Log.warnings(caught, 'pooled')
        results = [merge_sample(r, (pooled[0][r.sample], pooled[1][r.sample]), config) for r in results]
    else:
        results = mapper(partial(denoise_sample, models=models, config=config, cancel=cancel if serial else None), results)
    results = _log_failures(results, failed, Log)
    if not results or cancelled():
        return finish(results, models)

    table = make_sequence_table({r.sample:r.mergers for r in results}, order_by=config.order_by)
    Log('Sequence table: {:} samples x {:} sequence variants.'.format(*table.shape), True)
    if config.length_band is not None:
        table = table.filter_lengths(*config.length_band)
        Log('{:} variants within the length band {:}-{:}.'.format(len(table), *config.length_band), True)

    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter('always')
        chimeras = remove_bimera_denovo(table, method=config.chimera_method, min_fold=config.min_fold,
                                        **config.options(chimera_options))
    Log.warnings(caught)
    nchim = int(chimeras.calls['chimeric'].sum())
    Log('Identified {:} bimeras out of {:} input sequences; {:.2%} of reads retained.'.format(
        nchim, len(table), chimeras.retained), True)
    table = chimeras.table

    result = finish(results, models, table, chimeras.calls, chimeras.retained)
    nonchim = table.sample_totals()
    track = result.track
    track['nonchim'] = nonchim.reindex(track.index).fillna(0).astype(np.int64)
    Log('Reads tracked through the pipeline:', True, header=True)
    Log(track.to_string(), True)

    table.write_table(os.path.join(config.output_dir, params.table_file))
    table.write_catalog(os.path.join(config.output_dir, params.catalog_file))
    write_track(track, os.path.join(config.output_dir, params.track_file))
    return result._replace(track=track)
