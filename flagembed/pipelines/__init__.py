"""Embedding pipelines.

- ``normalizer``: first-token pooling and L2 normalization.
- ``chunk``: encode → assemble → infer → normalize for one chunk of inputs.
- ``scheduler``: fans chunks out concurrently and reassembles results in order.
- ``retry_handler``: exponential backoff for transient failures.
"""
