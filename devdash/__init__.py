"""devdash: changelog, deployment and release-health context for developers."""

__version__ = "0.1.0"
