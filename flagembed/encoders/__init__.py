"""Tokenization and tensor assembly.

Exports the ``Encoder`` that turns raw strings into fixed-length token
sequences and the ``TensorAssembler`` that flattens them into the int64
buffers the inference engine consumes. Keep heavy imports within the
implementation modules.
"""
