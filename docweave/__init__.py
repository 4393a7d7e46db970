"""docweave: versioned, collaboratively edited text documents."""

__version__ = "0.1.0"
