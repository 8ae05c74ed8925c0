"""jsrev: token-budgeted segmentation and analysis of large minified JavaScript."""

__version__ = "0.1.0"
