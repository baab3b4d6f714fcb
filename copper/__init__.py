"""Building blocks for services: config, errors, logging, lifecycle, HTTP and SQL."""

__version__ = "0.1.0"