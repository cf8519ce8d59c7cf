"""High level code for driving the paired amplicon analysis.

Processing is structured into the following modules:

  - config_utils.py: Load and validate the run configuration.
  - manifest.py: Read and check the sample manifest.
  - stages.py: Stage records and the fail-fast track runner.
  - qiime2.py: Stages of the QIIME 2 track.
  - dada2.py: Stages of the cutadapt and R/DADA2 track.
  - main.py: Top level driver running both tracks and writing the report.
"""
