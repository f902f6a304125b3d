"""linkwatch: router interface traffic polling and alerting."""

__version__ = "0.1.0"
