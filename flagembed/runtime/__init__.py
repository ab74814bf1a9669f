"""Inference engine boundary.

- ``environment``: process-wide engine environment with explicit lifecycle.
- ``inference``: ``OnnxInferencePort`` executing the forward pass per chunk.
"""
