"""Batch job models, lanes, scheduling and auditing."""
