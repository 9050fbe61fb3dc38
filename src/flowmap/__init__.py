"""Flowmap - incremental source-graph indexer."""

__version__ = "0.4.0"
