"""Integration tests against the published model archives.

Skipped unless ``FLAGEMBED_INTEGRATION=1``; they download real weights.
"""
