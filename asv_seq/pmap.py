"""Parallel map functions for per-sample work.

Samples are independent until the sequence table is built, so each stage of the
pipeline is a map over samples:

1) pmap(function, iterable) -> fork-based multi-process map.

2) large_iter_pmap(function, iterable) -> the same, chunked, with a status bar;
    intended for many long-running calls (e.g. denoising every sample).

Both fall back to a single process (with a RuntimeWarning) if the function
cannot be pickled.
"""
import multiprocessing
from warnings import warn
from pickle import PicklingError
from time import sleep
from progressbar import ProgressBar, Bar, Percentage
from asv_seq import params

CPUs = params.CPUs
CHUNKS = 50*CPUs

def _serial(func, Iter):
    warn("Function cannot be pickled for parallelization. Using single process.", RuntimeWarning)
    return list(map(func, Iter))

def pmap(func, Iter, processes=CPUs):
    Iter = list(Iter)
    if processes <= 1 or len(Iter) <= 1:
        return list(map(func, Iter))
    try:
        with multiprocessing.Pool(processes=min(processes, len(Iter))) as P:
            return P.map(func, Iter)
    except (PicklingError, AttributeError, TypeError) as e:
        if 'pickle' not in str(e).lower():
            raise
        return _serial(func, Iter)

def large_iter_pmap(func, Iter, processes=CPUs, status_bar=True, wait_interval=1):
    Iter = list(Iter)
    if processes <= 1 or len(Iter) <= 1:
        return list(map(func, Iter))
    try:
        with multiprocessing.Pool(processes=processes) as P:
            size = max(1, int(round(len(Iter)/CHUNKS)))
            rs = P.map_async(func, Iter, chunksize=size)
            if status_bar:
                maxval = rs._number_left
                bar = ProgressBar(max_value=maxval, widgets=[Bar('=', '[', ']'), ' ', Percentage()])
                while not rs.ready():
                    sleep(wait_interval)
                    bar.update(maxval - rs._number_left)
                bar.finish()
            return rs.get()
    except (PicklingError, AttributeError, TypeError) as e:
        if 'pickle' not in str(e).lower():
            raise
        return _serial(func, Iter)
