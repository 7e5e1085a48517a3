"""PRF profiling log analyzer."""

__version__ = "0.1.0"
