"""Concurrent history collection across many repositories.

This package provides:
- RepoScanner: walk one repository and keep the commits a Classifier accepts
- HistoryAggregator: fan scans out over a worker pool and merge the results
- Progress sinks (no-op, logging, rich terminal UI)
- Application configuration (TOML)

A failing repository never stops the scan; it is reported to the progress
sink and simply contributes no commits to the snapshot.
"""
