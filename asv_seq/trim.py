"""Primer removal from paired FASTQ files.

Trimmers share one narrow interface:

    trimmer.trim(forward_in, reverse_in, forward_out, reverse_out) -> dict of tallies

so the rest of the pipeline never depends upon a particular tool's arguments.
RegexPrimerTrimmer works natively; CutadaptTrimmer runs the external `cutadapt`
program.
"""
import os
from subprocess import Popen, PIPE
import regex
from asv_seq.fastq import read_fastq, pair_reads, write_fastq

IUPAC = dict(A='A', C='C', G='G', T='T', U='T', R='[AG]', Y='[CT]', S='[CG]', W='[AT]', K='[GT]', M='[AC]',
             B='[CGT]', D='[AGT]', H='[ACT]', V='[ACG]', N='[ACGTN]')

def primer_pattern(primer, max_substitutions=2, max_offset=0):
    """Compiles a fuzzy regular expression matching `primer` (IUPAC codes allowed)
at most `max_offset` bases from the start of a read, with at most
`max_substitutions` substitutions."""
    body = ''.join(IUPAC[nuc] for nuc in primer.upper())
    offset = '^.{{0,{:}}}?'.format(max_offset) if max_offset else '^'
    return regex.compile('{:}(?:{:}){{s<={:}}}'.format(offset, body, max_substitutions), regex.BESTMATCH)

class PrimerTrimmer(object):
    """Removes the forward primer from forward reads & the reverse primer from
reverse reads; pairs missing either primer are discarded."""
    def __init__(self, forward_primer, reverse_primer):
        self.forward_primer = forward_primer
        self.reverse_primer = reverse_primer

    def trim(self, forward_in, reverse_in, forward_out, reverse_out):
        raise NotImplementedError

class RegexPrimerTrimmer(PrimerTrimmer):
    def __init__(self, forward_primer, reverse_primer, max_substitutions=2, max_offset=0):
        super().__init__(forward_primer, reverse_primer)
        self.forward_pattern = primer_pattern(forward_primer, max_substitutions, max_offset)
        self.reverse_pattern = primer_pattern(reverse_primer, max_substitutions, max_offset)

    @staticmethod
    def trim_read(read, pattern):
        """Read without its primer (and any bases before it), or None if the primer is absent."""
        match = pattern.match(read.sequence)
        if match is None:
            return None
        end = match.end()
        return read._replace(sequence=read.sequence[end:], quality=read.quality[end:])

    def trim(self, forward_in, reverse_in, forward_out, reverse_out, sample=None):
        forward, reverse = read_fastq(forward_in, sample), read_fastq(reverse_in, sample)
        pair_reads(forward, reverse, sample, (forward_in, reverse_in))
        out_F, out_R = [], []
        tallies = {'reads.in':len(forward), 'forward primer absent':0, 'reverse primer absent':0}
        for f, r in zip(forward, reverse):
            tf = self.trim_read(f, self.forward_pattern)
            tr = self.trim_read(r, self.reverse_pattern)
            if tf is None:
                tallies['forward primer absent'] += 1
            if tr is None:
                tallies['reverse primer absent'] += 1
            if tf is not None and tr is not None:
                out_F.append(tf)
                out_R.append(tr)
        write_fastq(out_F, forward_out)
        write_fastq(out_R, reverse_out)
        tallies['reads.out'] = len(out_F)
        return tallies

class CutadaptTrimmer(PrimerTrimmer):
    """Runs cutadapt (https://cutadapt.readthedocs.io) on a pair of files."""
    def __init__(self, forward_primer, reverse_primer, cmd='cutadapt', error_rate=0.1, cores=1, extra_args=()):
        super().__init__(forward_primer, reverse_primer)
        self.cmd = cmd
        self.error_rate = error_rate
        self.cores = cores
        self.extra_args = list(extra_args)

    def command(self, forward_in, reverse_in, forward_out, reverse_out):
        options = { '-g':'^'+self.forward_primer,
                    '-G':'^'+self.reverse_primer,
                    '-e':self.error_rate,
                    '-j':self.cores,
                    '-o':forward_out,
                    '-p':reverse_out}
        return ([self.cmd, '--discard-untrimmed'] + [str(s) for item in options.items() for s in item] +
                self.extra_args + [str(forward_in), str(reverse_in)])

    @staticmethod
    def parse_report(output):
        """Tallies from cutadapt's report, e.g. 'Total read pairs processed:  1,000'."""
        stats = {'Total read pairs processed':'reads.in', 'Pairs written (passing filters)':'reads.out'}
        tallies = dict()
        for line in output.splitlines():
            for stat, name in stats.items():
                if line.strip().startswith(stat+':'):
                    tallies[name] = int(line.partition(':')[2].split()[0].replace(',', ''))
        return tallies

    def trim(self, forward_in, reverse_in, forward_out, reverse_out):
        for filename in (forward_out, reverse_out):
            directory = os.path.dirname(str(filename))
            if directory:
                os.makedirs(directory, exist_ok=True)
        command = self.command(forward_in, reverse_in, forward_out, reverse_out)
        process = Popen(command, stdout=PIPE, stderr=PIPE)
        stdout, stderr = process.communicate()
        if process.returncode != 0:
            raise RuntimeError("{:} failed ({:}):\n{:}".format(' '.join(command), process.returncode, stderr.decode('utf-8', 'replace')))
        tallies = self.parse_report(stdout.decode('utf-8', 'replace'))
        tallies['command'] = ' '.join(command)
        return tallies
