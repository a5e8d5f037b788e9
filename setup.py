#!/usr/bin/env python3
from setuptools import setup

setup(  name='asv_seq',
        description='Amplicon sequence variant inference from paired-end Illumina reads',
        author='Christopher McFarland',
        author_email='christopherdmcfarland@gmail.com',
        license='MIT',
        classifiers=[
            'Development Status :: 3 - Alpha',
            'Intended Audience :: Science/Research',
            'Natural Language :: English',
            'Operating System :: POSIX',
            'Topic :: Scientific/Engineering :: Bio-Informatics'],
        packages=['asv_seq'],
        install_requires=[
            'numpy',
            'scipy',
            'pandas',
            'matplotlib',
            'seaborn',
            'biopython',
            'progressbar2',
            'scikit-learn',
            'regex'],
        extras_require={'test':['pytest']},
        scripts=[
            'bin/filter_and_trim.py',
            'bin/trim_primers.py',
            'bin/denoise.py'],
        python_requires='>=3.8',
        version='0.1',
        )
