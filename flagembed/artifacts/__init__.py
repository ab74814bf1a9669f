"""Model artifacts.

Exports the supported model enumeration and the ``ArtifactStore`` that makes
a model's files available under the local cache directory.
"""
