"""cubed-sync: keep a local folder in sync with a server on a remote dashboard."""

__version__ = "0.3.0"
