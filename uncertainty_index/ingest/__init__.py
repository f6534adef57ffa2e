"""
Monthly ingest: value resolution, outlier validation, release schedules,
statistics and the orchestrator that ties them together.
"""

__all__ = ["resolution", "validation", "schedules", "statistics", "orchestrator"]
