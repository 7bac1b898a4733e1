"""
resultcheck - Batch Test Result Lookup
======================================

A Python package for looking up test results for a batch of people
identified by national ID number (UIN) or passport.

Modules:
--------
- config.py       : Configuration management (loads settings from .env)
- validation.py   : UIN checksum validation
- subjects.py     : Session state, subjects and summary counters
- loader.py       : Input file import (Excel/CSV, validation, dedup)
- client.py       : HTTP client for the results API
- dispatcher.py   : Runs requests with a bounded number in flight
- orchestrator.py : One retrieval run over a session
- exporter.py     : Writes consolidated results (Excel/CSV)
- errors.py       : Error taxonomy
- run_checker.py  : Main entry point

Usage:
------
    python -m resultcheck.run_checker input.xlsx
    python -m resultcheck.run_checker a.xlsx b.xlsx --format csv
    python -m resultcheck.run_checker input.xlsx --dry-run

Workflow:
---------
1. Load configuration from .env file
2. Import input files, skipping invalid and duplicate IDs
3. Query the results API for every subject without a result
4. Stop early if the API key is rejected
5. Write results to the 'out/' directory
"""
