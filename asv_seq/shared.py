"""Shared utilities for this package.

Class logPrint both 'logs' and 'prints' (when verbosity insists) any output
string. Additional info of every command-line script (arguments, runtime) are
also logged. 

The exceptions & warnings raised throughout the pipeline are also defined here.
"""
from datetime import datetime
import atexit, os

class InputError(ValueError):
    """Malformed or empty read files, or mismatched read pairs."""
    def __init__(self, message, filename=None, sample=None):
        self.filename = filename
        self.sample = sample
        context = ', '.join('{:}: {:}'.format(k, v) for k, v in (('sample', sample), ('file', filename)) if v is not None)
        super().__init__(message + (' ({:})'.format(context) if context else ''))

class LearnError(RuntimeError):
    pass

class ConvergenceWarning(RuntimeWarning):
    pass

class QualityDataGap(UserWarning):
    pass

class ChimeraAmbiguous(UserWarning):
    pass

def smart_open(filename, mode='rb', makedirs=False):
    filename = str(filename)
    if makedirs:
        directory = os.path.dirname(filename)
        if directory:
            os.makedirs(directory, exist_ok=True)
    if filename[-5:] == '.gzip' or filename[-3:] == '.gz':
        from gzip import open
    elif filename[-4:] == '.bz2':
        from bz2 import open
    elif filename[-5:] == '.lzma' or filename[-3:] == '.xz':
        from lzma import open
    else:
        from builtins import open
    return open(filename, mode)

class logPrint(object):
    def line_break(self):
        self.f.write(80*'-'+'\n')

    def __call__(self, line, print_line=False, header=False):
        if self.verbose or print_line:
            print(line)
        if header:
            self.f.write((len(line)+4)*"#"+'\n')
            self.f.write('# '+str(line)+' #\n')        
            self.f.write((len(line)+4)*"#"+'\n')
        else:
            self.f.write(str(line)+'\n')        
        self.f.flush()

    def warnings(self, caught, sample=None):
        """Logs a list of warnings.WarningMessage (from catch_warnings(record=True))."""
        for w in caught:
            self('{:}{:}: {:}'.format('' if sample is None else '['+sample+'] ', w.category.__name__, w.message))

    def close(self):
        if self.f.closed:
            return
        runtime = datetime.now() - self.start_time
        self('Runtime: {:}'.format(str(runtime).split('.')[0]))
        self.line_break()
        self.f.close()
    
    def __init__(self, input_args=None, filename=None, verbose=None):
        import __main__ as main 
        self.start_time = datetime.now()
        self.program = os.path.basename(getattr(main, '__file__', 'asv_seq')).partition('.py')[0]
        self.filename = self.program+'.LOG' if filename is None else str(filename)
        args_dict = input_args.__dict__.copy() if input_args is not None else dict()
        self.verbose = args_dict.pop('verbose', False) if verbose is None else verbose
        if self.verbose:
            print("Logging output to", self.filename) 
        self.f = open(self.filename, 'a')
        self.f.write('\n')
        self.line_break()
        self.f.write("Output Summary of {0.program}, executed at {0.start_time:%c} with the following input arguments:\n".format(self))
        self.line_break()
        for arg, val in args_dict.items():
            self.f.write("{:}: {:}\n".format(arg, val))
        self.line_break()
        atexit.register(self.close)

