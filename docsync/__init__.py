"""docsync - resumable, loop-free replication of a local document store."""

__version__ = "0.1.0"
