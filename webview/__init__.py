"""Content-rewriting proxy that turns an external page into one embeddable document."""

__version__ = "0.1.0"
