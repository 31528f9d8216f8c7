"""Rate-limited, single-flight, freshness-aware gate in front of an AI content generator."""

__version__ = "0.1.0"
