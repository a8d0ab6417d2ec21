"""safesend: rate-limited, deduplicated outbound chat messaging."""

__version__ = "1.0.0"
