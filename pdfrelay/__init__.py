"""PDF jobs through command-line engines with fallback, form handling, metrics and webhook delivery."""

__version__ = "0.1.0"