"""Reading, writing, pairing & quality-filtering of FASTQ files.

Reads are held as `Read` named tuples: (sequence, quality, sample, pair_id), 
where `quality` is a numpy array of PHRED scores. Reads are never mutated;
trimming produces new Read objects. 

"""
import numpy as np
import pandas as pd
import regex
from collections import namedtuple
from asv_seq.shared import smart_open, InputError
from asv_seq import params

Read = namedtuple('Read', ['sequence', 'quality', 'sample', 'pair_id'])

_invalid_base = regex.compile(rb'[^ACGTNacgtn]')

def phred_to_error(Q):
    return np.power(10., -np.asarray(Q, dtype=float)/10)

def get_QC_map(max_PHRED=params.max_PHRED):
    """get_QC_map() -> pd.Series of error probabilities indexed by PHRED score."""
    Q = np.arange(max_PHRED+1)
    S = pd.Series(phred_to_error(Q), index=Q, name='Error Probability')
    S.index.name = 'PHRED'
    return S

def decode_quality(qc, ascii_base=params.ASCII_BASE):
    return np.frombuffer(qc, dtype=np.uint8).astype(np.int16) - ascii_base

def encode_quality(Q, ascii_base=params.ASCII_BASE):
    return (np.asarray(Q, dtype=np.int16) + ascii_base).astype(np.uint8).tobytes()

def expected_errors(quality):
    """Expected # of errors in a read: the sum of its per-base error probabilities."""
    return phred_to_error(quality).sum()

def read_id(header):
    """read_id(b'@M0:1:FC:1:1:10:20 1:N:0:1') -> 'M0:1:FC:1:1:10:20'

Strips the '@', the comment field, & any /1 or /2 mate suffix, such that mates
share an identifier.
"""
    if isinstance(header, bytes):
        header = header.decode('ascii')
    name = header.strip().lstrip('@').split()[0] if header.strip() else ''
    if name[-2:] in ('/1', '/2'):
        name = name[:-2]
    return name

class IterFASTQ(object):
    """Iterates over (header, DNA, QC) byte-string triples of a FASTQ file.

Compressed files are handled by smart_open. Truncated or malformed records,
including non-ASCII text & bases other than ACGTN, raise an InputError that
names the file & record.
"""
    def __init__(self, filename, sample=None):
        self.filename = filename
        self.sample = sample

    def __iter__(self):
        with smart_open(self.filename, 'rb') as f:
            record = 0
            while True:
                header = f.readline()
                if not header:
                    return
                if not header.strip():
                    continue
                DNA, sep, QC = f.readline(), f.readline(), f.readline()
                record += 1
                if not header.startswith(b'@'):
                    raise InputError("Record {:} does not begin with '@'".format(record), self.filename, self.sample)
                if not sep.startswith(b'+'):
                    raise InputError("Record {:} is missing its '+' separator".format(record), self.filename, self.sample)
                DNA, QC = DNA.rstrip(b'\r\n'), QC.rstrip(b'\r\n')
                if len(DNA) != len(QC):
                    raise InputError("Record {:} has {:} bases, but {:} quality scores".format(record, len(DNA), len(QC)), self.filename, self.sample)
                if not (header.isascii() and DNA.isascii() and QC.isascii()):
                    raise InputError("Record {:} contains non-ASCII characters".format(record), self.filename, self.sample)
                invalid = _invalid_base.search(DNA)
                if invalid:
                    raise InputError("Record {:} contains an invalid base {!r} at position {:}".format(
                        record, invalid.group(), invalid.start()+1), self.filename, self.sample)
                yield header.rstrip(b'\r\n'), DNA, QC

def read_fastq(filename, sample=None):
    """read_fastq(filename) -> list of Reads"""
    reads = [Read(DNA.decode('ascii').upper(), decode_quality(QC), sample, read_id(header)) 
                for header, DNA, QC in IterFASTQ(filename, sample)]
    if not reads:
        raise InputError("No reads found", filename, sample)
    return reads

def read_to_fastq(read, ascii_base=params.ASCII_BASE):
    return b'@'+read.pair_id.encode('ascii')+b'\n'+read.sequence.encode('ascii')+b'\n+\n'+encode_quality(read.quality, ascii_base)+b'\n'

def write_fastq(reads, filename):
    with smart_open(filename, 'wb', makedirs=True) as f:
        for read in reads:
            f.write(read_to_fastq(read))
    return len(reads)

def pair_reads(forward, reverse, sample=None, filenames=(None, None)):
    """Verifies that forward & reverse Reads are mates of one another. 

Mates must be listed in the same order and share an identifier (after read_id 
normalization). Returns the pair identifiers. 
"""
    if len(forward) != len(reverse):
        raise InputError("Forward & reverse files contain {:} and {:} reads".format(len(forward), len(reverse)), 
                            ' & '.join(map(str, filenames)), sample)
    for i, (f, r) in enumerate(zip(forward, reverse)):
        if f.pair_id != r.pair_id:
            raise InputError("Read {:} is unpaired: {:} != {:}".format(i+1, f.pair_id, r.pair_id), 
                                ' & '.join(map(str, filenames)), sample)
    return [f.pair_id for f in forward]

def trim_read(read, trim_left=0, trunc_len=0, trunc_q=params.trunc_q):
    """Trim a single read, DADA2-style. Returns None if the read is too short to truncate."""
    seq, qc = read.sequence[trim_left:], read.quality[trim_left:]
    low = np.flatnonzero(qc <= trunc_q)
    if len(low):
        seq, qc = seq[:low[0]], qc[:low[0]]
    if trunc_len > 0:
        if len(seq) < trunc_len - trim_left:
            return None
        seq, qc = seq[:trunc_len - trim_left], qc[:trunc_len - trim_left]
    return read._replace(sequence=seq, quality=qc)

def passes_filter(read, max_ee=params.max_ee[0], max_n=params.max_n, min_len=params.min_len):
    return (read is not None and 
            len(read.sequence) >= min_len and 
            read.sequence.count('N') <= max_n and 
            expected_errors(read.quality) <= max_ee)

def filter_pairs(forward, reverse, trim_left=params.trim_left, trunc_len=params.trunc_len, trunc_q=params.trunc_q,
                 max_ee=params.max_ee, max_n=params.max_n, min_len=params.min_len):
    """filter_pairs(forward Reads, reverse Reads) -> (filtered forward, filtered reverse)

Mates are trimmed and filtered independently with their direction's parameters 
(trim_left, trunc_len & max_ee are (forward, reverse) tuples). A pair is kept 
only if both mates pass.
"""
    out_F, out_R = [], []
    for f, r in zip(forward, reverse):
        tf = trim_read(f, trim_left[0], trunc_len[0], trunc_q)
        tr = trim_read(r, trim_left[1], trunc_len[1], trunc_q)
        if passes_filter(tf, max_ee[0], max_n, min_len) and passes_filter(tr, max_ee[1], max_n, min_len):
            out_F.append(tf)
            out_R.append(tr)
    return out_F, out_R

def filter_and_trim(forward_in, reverse_in, forward_out, reverse_out, sample=None, **kargs):
    """Filters a pair of FASTQ files, writing passing pairs to the output files.

Returns pd.Series with 'reads.in' & 'reads.out' counts. See filter_pairs for 
parameters.
"""
    forward, reverse = read_fastq(forward_in, sample), read_fastq(reverse_in, sample)
    pair_reads(forward, reverse, sample, (forward_in, reverse_in))
    out_F, out_R = filter_pairs(forward, reverse, **kargs)
    write_fastq(out_F, forward_out)
    write_fastq(out_R, reverse_out)
    return pd.Series({'reads.in':len(forward), 'reads.out':len(out_F)}, name=sample)
