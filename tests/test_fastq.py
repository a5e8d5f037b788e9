import gzip
import numpy as np
import pytest
from asv_seq.shared import InputError
from asv_seq.fastq import (Read, read_fastq, write_fastq, read_id, pair_reads, trim_read, passes_filter,
                           filter_pairs, filter_and_trim, expected_errors, get_QC_map, decode_quality, encode_quality)

def make_read(seq, Q=30, pair_id='r1'):
    return Read(seq, np.full(len(seq), Q, dtype=np.int16), None, pair_id)

def test_quality_codec():
    Q = decode_quality(b'I#5')
    assert Q.tolist() == [40, 2, 20]
    assert encode_quality(Q) == b'I#5'

def test_QC_map():
    S = get_QC_map()
    assert S[10] == pytest.approx(0.1)
    assert S[30] == pytest.approx(0.001)
    assert S.index.max() == 62

def test_expected_errors():
    assert expected_errors(np.array([10, 10, 20])) == pytest.approx(0.21)

@pytest.mark.parametrize('header,expected', [
    (b'@M0:1:FC:1:1:10:20 1:N:0:1', 'M0:1:FC:1:1:10:20'),
    (b'@M0:1:FC:1:1:10:20 2:N:0:1', 'M0:1:FC:1:1:10:20'),
    ('@read7/2', 'read7'),
    ('@read7', 'read7')])
def test_read_id(header, expected):
    assert read_id(header) == expected

def test_write_and_read(tmp_path):
    reads = [make_read('ACGTN', 30, 'a'), make_read('GGCC', 12, 'b')]
    filename = tmp_path / 'sub' / 'reads.fastq.gz'
    assert write_fastq(reads, filename) == 2
    back = read_fastq(filename, 'S')
    assert [r.sequence for r in back] == ['ACGTN', 'GGCC']
    assert [r.pair_id for r in back] == ['a', 'b']
    assert back[1].quality.tolist() == [12]*4
    assert back[0].sample == 'S'

@pytest.mark.parametrize('content', [
    b'@r1\nACGT\n+\nIII\n',
    b'r1\nACGT\n+\nIIII\n',
    b'@r1\nACGT\n-\nIIII\n',
    b'@r1\nAC\xffT\n+\nIIII\n',
    b'@r\xff1\nACGT\n+\nIIII\n',
    b'@r1\nACGT\n+\nII\xffI\n',
    b'@r1\nACXT\n+\nIIII\n'])
def test_malformed(tmp_path, content):
    filename = tmp_path / 'bad.fastq'
    filename.write_bytes(content)
    with pytest.raises(InputError, match='bad.fastq'):
        read_fastq(filename, 'S')

def test_empty(tmp_path):
    filename = tmp_path / 'empty.fastq.gz'
    with gzip.open(filename, 'wb'):
        pass
    with pytest.raises(InputError, match='No reads'):
        read_fastq(filename, 'S')

def test_pair_reads():
    forward = [make_read('ACGT', pair_id='a'), make_read('ACGT', pair_id='b')]
    assert pair_reads(forward, list(forward)) == ['a', 'b']
    with pytest.raises(InputError, match='2 and 1 reads'):
        pair_reads(forward, forward[:1], sample='S')
    with pytest.raises(InputError, match='unpaired'):
        pair_reads(forward, forward[::-1], sample='S')

def test_trim_read():
    read = Read('ACGTACGTAC', np.array([30, 30, 30, 30, 30, 30, 2, 30, 30, 30]), None, 'r')
    trimmed = trim_read(read, trim_left=1)
    assert trimmed.sequence == 'CGTAC'
    assert len(trimmed.quality) == 5
    assert trim_read(read, trunc_len=8) is None
    assert trim_read(read, trunc_len=4).sequence == 'ACGT'
    assert trim_read(read, trim_left=1, trunc_len=4).sequence == 'CGT'

def test_passes_filter():
    assert passes_filter(make_read(25*'A'))
    assert not passes_filter(make_read(10*'A'))
    assert not passes_filter(make_read(24*'A'+'N'))
    assert not passes_filter(make_read(25*'A', Q=5))
    assert not passes_filter(None)

def test_filter_pairs():
    good, bad = make_read(30*'A', 30), make_read(30*'A', 5)
    F, R = filter_pairs([good, good, bad], [good, bad, good])
    assert len(F) == len(R) == 1

def test_filter_and_trim(tmp_path, fastq_pair):
    forward_in, reverse_in = fastq_pair
    counts = filter_and_trim(forward_in, reverse_in, tmp_path / 'out' / 'F.fastq', tmp_path / 'out' / 'R.fastq',
                             sample='S1', trunc_len=(140, 130))
    assert counts['reads.in'] == 100
    assert 0 < counts['reads.out'] <= 100
    F, R = read_fastq(tmp_path / 'out' / 'F.fastq'), read_fastq(tmp_path / 'out' / 'R.fastq')
    assert len(F) == len(R) == counts['reads.out']
    assert {len(r.sequence) for r in F} == {140}
    assert {len(r.sequence) for r in R} == {130}
