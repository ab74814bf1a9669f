"""Tests for the embedding library.

Unit tests cover configuration, the artifact cache, tokenization, tensor
assembly, normalization, scheduling, and the service facade. The inference
engine is replaced by a deterministic fake so no model weights are needed.
"""
