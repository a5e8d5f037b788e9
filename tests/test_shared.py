import warnings
from asv_seq.shared import InputError, ConvergenceWarning, smart_open, logPrint

def test_input_error_context():
    e = InputError('No reads found', filename='S1_R1.fastq', sample='S1')
    assert str(e) == 'No reads found (sample: S1, file: S1_R1.fastq)'
    assert e.sample == 'S1'
    assert isinstance(e, ValueError)
    assert str(InputError('Bad')) == 'Bad'

def test_smart_open(tmp_path):
    for ext in ('.gz', '.bz2', '.xz', '.txt'):
        filename = tmp_path / 'sub' / ('file'+ext)
        with smart_open(filename, 'wt', makedirs=True) as f:
            f.write('hello\n')
        with smart_open(filename, 'rt') as f:
            assert f.read() == 'hello\n'

def test_logPrint(tmp_path, capsys):
    filename = tmp_path / 'run.LOG'
    Log = logPrint(filename=filename, verbose=False)
    Log('quiet line')
    Log('loud line', True)
    Log('Section', header=True)
    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter('always')
        warnings.warn('did not converge', ConvergenceWarning)
    Log.warnings(caught, 'S1')
    Log.close()
    Log.close()
    text = filename.read_text()
    assert 'quiet line' in text and 'loud line' in text
    assert '# Section #' in text
    assert '[S1] ConvergenceWarning: did not converge' in text
    assert 'Runtime:' in text
    assert capsys.readouterr().out == 'loud line\n'
