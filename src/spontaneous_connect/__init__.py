"""
Spontaneous Connect: recurring call scheduling with concurrency-safe state.
"""

__version__ = "1.0.0"
