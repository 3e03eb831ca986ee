"""Platform-qualified installer for pre-built release archives."""

__version__ = "1.0.0"
