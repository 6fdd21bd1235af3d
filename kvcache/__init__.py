"""
kvcache — Pluggable key-value cache engines.

One async contract (CacheEngine) with interchangeable backends: a
filesystem store, single-node Redis and Redis Cluster.
"""

__version__ = "1.0.0"
