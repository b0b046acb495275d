"""
Survey Link Guard

Single-use survey link distribution with response quality control:
1. Generates participant links in sequential, imported or hybrid batches
2. Gates first clicks and completions on geography and anonymizing networks
3. Scores completed responses with independent fraud/quality detectors
4. Charges per-vendor quota pools atomically on completion
"""

__version__ = "0.1.0"
