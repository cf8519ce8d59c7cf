#!/usr/bin/env python -Es
"""Run paired QIIME 2 and R/DADA2 amplicon analyses from one configuration.

Usage:
  ampliconpipe.py --config config.yaml       # run both tracks
  ampliconpipe.py --bootstrap-environment    # only create the QIIME 2 env (idempotent)
  ampliconpipe.py --config config.yaml --verbose   # also echo tool output to stdout

conda, the env manager (mamba), cutadapt and Rscript must be on the PATH.

The configuration is a YAML file describing the sample manifest, metadata,
primers, trimming and truncation lengths, sampling depth, threads, the
classifier location and DADA2 parameters. An example is in config/config.yaml.

Exit codes:
  0 success, 3 configuration error, 4 environment bootstrap error or missing tool,
  5 classifier download or integrity error, 6 one or both tracks failed.
"""
import sys

from ampliconpipe.pipeline import main

if __name__ == "__main__":
    sys.exit(main.main(sys.argv[1:]))
