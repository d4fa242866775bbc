"""Core module - shared platform plumbing.

Models, errors, configuration, audit, security and observability used by
the connector, sync, compliance and provider layers.
"""

__version__ = "1.0.0"
