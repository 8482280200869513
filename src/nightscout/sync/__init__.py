"""Nightscout sync orchestration helpers.

Modules:
    puller — Concurrent incremental pull of every fetchable record family
"""
