"""Core module - shared plumbing for identity resolution.

Holds the error taxonomy, environment-driven settings and observability
(logging, metrics). Domain logic lives in /dedup/ and /supplier_resolver/.
"""

__version__ = "1.0.0"
