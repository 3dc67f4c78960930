"""
refnotes - a hierarchical note store with stable references.

Notes are addressed by human-readable refs derived from their position in
the tree at creation time (``1``, ``1.2``, ``1.2.1``), bibliography entries
live in a flat ``B1``, ``B2`` namespace, and note content can point at other
notes with ``[[ref]]`` links that are resolved against the live note set.

This version uses synchronous operations.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("refnotes")
except PackageNotFoundError:
    __version__ = "0.3.0"
