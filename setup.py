#!/usr/bin/env python

"""Setup file and install script for paired QIIME 2 and DADA2 amplicon analysis"""

import os
import subprocess

import setuptools

VERSION = '0.1.0'

# add version number and git commit hash of the current revision to version.py
try:
    git_run = subprocess.run(['git', 'rev-parse', '--short', 'HEAD'], stdout=subprocess.PIPE,
                             stderr=subprocess.DEVNULL)
    git_run.check_returncode()
except (OSError, subprocess.SubprocessError):
    commit_hash = ''
else:
    commit_hash = git_run.stdout.strip().decode()

here = os.path.dirname(os.path.abspath(__file__))
with open(os.path.join(here, 'ampliconpipe', 'pipeline', 'version.py'), 'w') as version_file:
    version_file.writelines([f'__version__ = "{VERSION}"\n',
                             f'__git_revision__ = "{commit_hash}"\n'])

# QIIME 2, cutadapt and R/DADA2 are external tools installed via conda
setuptools.setup(name='ampliconpipe',
                 version=VERSION,
                 description='Paired QIIME 2 and R/DADA2 amplicon analysis with cross-validated outputs',
                 packages=setuptools.find_packages(exclude=['tests', 'tests.*']),
                 package_data={'ampliconpipe.pipeline': ['R/*.R']},
                 scripts=['scripts/ampliconpipe.py'],
                 python_requires='>=3.8',
                 install_requires=['logbook', 'PyYAML>=5.1', 'requests', 'toolz'],
                 extras_require={'test': ['pytest', 'pytest-mock', 'mock']})
