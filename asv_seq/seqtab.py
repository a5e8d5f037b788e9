"""Sample x sequence-variant abundance tables, and the pipeline's output files.

A SequenceTable stores its counts as a scipy.sparse CSR matrix: rows are samples
(in input order), columns are distinct sequences. Columns are identified in
output files by the md5 hash of their sequence; the sequence catalog (FASTA)
maps hashes back to sequences.
"""
import hashlib
import numpy as np
import pandas as pd
from scipy import sparse
from Bio.Seq import Seq
from Bio.SeqRecord import SeqRecord
from Bio import SeqIO
from asv_seq.shared import smart_open
from asv_seq import params

def sequence_hash(sequence):
    return hashlib.md5(sequence.encode('ascii')).hexdigest()

class SequenceTable(object):
    def __init__(self, counts, samples, sequences):
        self.counts = sparse.csr_matrix(counts, dtype=np.int64)
        self.samples = list(samples)
        self.sequences = list(sequences)
        assert self.counts.shape == (len(self.samples), len(self.sequences)), "Table shape does not match its labels."
        assert len(set(self.samples)) == len(self.samples), "Samples must be unique."
        assert len(set(self.sequences)) == len(self.sequences), "Sequences must be unique."

    @property
    def shape(self):
        return self.counts.shape

    def __len__(self):
        return len(self.sequences)

    def totals(self):
        """Total abundance of each sequence across samples."""
        return pd.Series(np.asarray(self.counts.sum(axis=0)).ravel(), index=self.sequences, name='abundance')

    def sample_totals(self):
        return pd.Series(np.asarray(self.counts.sum(axis=1)).ravel(), index=self.samples, name='reads')

    def to_frame(self):
        return pd.DataFrame(self.counts.toarray(), index=pd.Index(self.samples, name='sample'), columns=self.sequences)

    def select(self, columns):
        """New table of the given column (sequence) indices, in the given order."""
        columns = np.asarray(columns, dtype=np.int64)
        return SequenceTable(self.counts[:, columns], self.samples, [self.sequences[i] for i in columns])

    def filter_lengths(self, min_length=None, max_length=None):
        """Drops sequences outside the expected amplicon length band (inclusive).
Abundances are not recomputed."""
        lengths = np.array([len(s) for s in self.sequences])
        keep = np.ones(len(lengths), dtype=bool)
        if min_length is not None:
            keep &= lengths >= min_length
        if max_length is not None:
            keep &= lengths <= max_length
        return self.select(np.flatnonzero(keep))

    def sort(self, order_by='abundance'):
        """Stable re-ordering of columns: by descending total 'abundance' or by 'sequence'."""
        if order_by == 'first':
            return self
        if order_by == 'abundance':
            order = np.argsort(-self.totals().values, kind='stable')
        elif order_by == 'sequence':
            order = np.argsort(np.array(self.sequences, dtype=object), kind='stable')
        else:
            raise ValueError("order_by must be 'first', 'abundance' or 'sequence', not {:}".format(order_by))
        return self.select(order)

    def hashes(self):
        return [sequence_hash(s) for s in self.sequences]

    def write_table(self, filename):
        """Tab-delimited abundance table; rows are samples, columns are sequence hashes."""
        df = self.to_frame()
        df.columns = self.hashes()
        with smart_open(filename, 'wt', makedirs=True) as f:
            df.to_csv(f, sep='\t', index_label='sample')

    def write_catalog(self, filename):
        """FASTA file of every sequence, named by its hash."""
        records = (SeqRecord(Seq(s), id=h, description='abundance={:}'.format(n))
                    for s, h, n in zip(self.sequences, self.hashes(), self.totals().values))
        with smart_open(filename, 'wt', makedirs=True) as f:
            SeqIO.write(records, f, 'fasta')

    @classmethod
    def read_table(cls, table_file, catalog_file):
        with smart_open(catalog_file, 'rt') as f:
            catalog = {record.id:str(record.seq) for record in SeqIO.parse(f, 'fasta')}
        with smart_open(table_file, 'rt') as f:
            df = pd.read_csv(f, sep='\t', index_col=0)
        return cls(df.values, df.index.astype(str), [catalog[h] for h in df.columns])

def _abundances(merger):
    """Abundance of each sequence in a mergers table (accepted rows only), a
denoised pd.Series, or any mapping of sequence -> abundance."""
    if isinstance(merger, pd.DataFrame):
        if 'accept' in merger.columns:
            merger = merger.loc[merger['accept'].astype(bool)]
        S = merger.groupby('sequence', sort=False)['abundance'].sum()
    else:
        S = pd.Series(merger, dtype=np.int64)
        S = S.groupby(level=0, sort=False).sum()
    return S[S > 0]

def make_sequence_table(mergers, order_by=params.order_by):
    """make_sequence_table({sample: mergers}) -> SequenceTable

Sequences are keyed by exact string identity. Columns are in the order each
sequence was first seen (samples in input order), unless `order_by` requests a
stable sort ('abundance' or 'sequence').
"""
    columns = dict()
    rows, cols, data = [], [], []
    for row, merger in enumerate(mergers.values()):
        S = _abundances(merger)
        for sequence, n in S.items():
            col = columns.setdefault(sequence, len(columns))
            rows.append(row)
            cols.append(col)
            data.append(int(n))
    counts = sparse.coo_matrix((data, (rows, cols)), shape=(len(mergers), len(columns)), dtype=np.int64)
    return SequenceTable(counts, list(mergers.keys()), list(columns.keys())).sort(order_by)

def merge_sequence_tables(*tables, repeats='error', order_by=params.order_by):
    """Combines tables (e.g. from separate sequencing runs). Samples found in more
than one table raise a ValueError, or are summed if repeats == 'sum'."""
    combined = dict()
    for table in tables:
        for sample, row in zip(table.samples, table.to_frame().itertuples(index=False)):
            S = pd.Series(row, index=table.sequences)
            if sample in combined:
                if repeats != 'sum':
                    raise ValueError("Sample {:} is present in more than one table.".format(sample))
                combined[sample] = combined[sample].add(S, fill_value=0)
            else:
                combined[sample] = S
    return make_sequence_table(combined, order_by=order_by)

def write_track(track, filename):
    """Tab-delimited per-sample read counts at every stage of the pipeline."""
    with smart_open(filename, 'wt', makedirs=True) as f:
        track.to_csv(f, sep='\t', index_label='sample')
