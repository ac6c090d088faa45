"""Memory Vista: content approval workflow for memorial profiles."""

__version__ = "0.1.0"
