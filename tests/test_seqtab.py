import hashlib
import numpy as np
import pandas as pd
import pytest
from Bio import SeqIO
from asv_seq.seqtab import SequenceTable, make_sequence_table, merge_sequence_tables, sequence_hash, write_track

def mergers(rows):
    return pd.DataFrame(rows, columns=['sequence', 'abundance', 'accept'])

@pytest.fixture
def table():
    return make_sequence_table({
        'S1': mergers([('ACGTACGT', 10, True), ('TTTT', 3, True), ('', 7, False), ('ACGTACGT', 2, True)]),
        'S2': mergers([('GGGGGG', 20, True), ('TTTT', 1, True)])})

def test_make_sequence_table(table):
    assert table.samples == ['S1', 'S2']
    assert table.sequences == ['ACGTACGT', 'TTTT', 'GGGGGG']        # first-seen order
    assert table.counts.toarray().tolist() == [[12, 3, 0], [0, 1, 20]]
    assert table.totals().tolist() == [12, 4, 20]
    assert table.sample_totals().tolist() == [15, 21]
    assert table.to_frame().loc['S2', 'GGGGGG'] == 20

def test_series_input():
    table = make_sequence_table({'S1': pd.Series({'AC': 5, 'GT': 0})})
    assert table.sequences == ['AC']

def test_sort(table):
    assert table.sort('abundance').sequences == ['GGGGGG', 'ACGTACGT', 'TTTT']
    assert table.sort('sequence').sequences == ['ACGTACGT', 'GGGGGG', 'TTTT']
    assert make_sequence_table({'S1': pd.Series({'T': 1, 'A': 1})}, order_by='abundance').sequences == ['T', 'A']
    with pytest.raises(ValueError):
        table.sort('length')

def test_filter_lengths(table):
    filtered = table.filter_lengths(5, 8)
    assert filtered.sequences == ['ACGTACGT', 'GGGGGG']
    assert filtered.counts.toarray().tolist() == [[12, 0], [0, 20]]
    assert table.filter_lengths(max_length=4).sequences == ['TTTT']

def test_merge_sequence_tables(table):
    other = make_sequence_table({'S3': pd.Series({'TTTT': 4, 'CCCC': 1})})
    combined = merge_sequence_tables(table, other)
    assert combined.samples == ['S1', 'S2', 'S3']
    assert combined.sequences == ['ACGTACGT', 'TTTT', 'GGGGGG', 'CCCC']
    assert combined.totals()['TTTT'] == 8
    with pytest.raises(ValueError):
        merge_sequence_tables(table, table)
    summed = merge_sequence_tables(table, table, repeats='sum')
    assert summed.counts.toarray().tolist() == [[24, 6, 0], [0, 2, 40]]

def test_outputs(tmp_path, table):
    assert sequence_hash('ACGT') == hashlib.md5(b'ACGT').hexdigest()
    table.write_table(tmp_path / 'out' / 'seqtab.tsv')
    table.write_catalog(tmp_path / 'out' / 'asvs.fasta')
    df = pd.read_csv(tmp_path / 'out' / 'seqtab.tsv', sep='\t', index_col=0)
    assert list(df.columns) == table.hashes()
    assert df.loc['S1'].tolist() == [12, 3, 0]
    records = list(SeqIO.parse(str(tmp_path / 'out' / 'asvs.fasta'), 'fasta'))
    assert [str(r.seq) for r in records] == table.sequences
    assert [r.id for r in records] == table.hashes()
    back = SequenceTable.read_table(tmp_path / 'out' / 'seqtab.tsv', tmp_path / 'out' / 'asvs.fasta')
    assert back.sequences == table.sequences
    assert (back.counts != table.counts).nnz == 0

def test_write_track(tmp_path):
    track = pd.DataFrame({'input': [10], 'nonchim': [8]}, index=pd.Index(['S1'], name='sample'))
    write_track(track, tmp_path / 'track.tsv')
    assert (tmp_path / 'track.tsv').read_text().splitlines()[0] == 'sample\tinput\tnonchim'

def test_empty_table():
    table = make_sequence_table({'S1': mergers([])})
    assert table.shape == (1, 0)
    assert table.totals().sum() == 0
