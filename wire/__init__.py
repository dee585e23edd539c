"""Cluster node building blocks: snapshot store, TCP multiplexing, streaming gzip and byte sizes."""

__version__ = "0.1.0"