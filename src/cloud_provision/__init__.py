"""
cloud_provision package bootstrap.

This package provisions one S3 bucket and one EC2 instance per department for a company,
idempotently and serially, logging every step to the terminal and a run-scoped log file.
"""

__all__ = ["__version__"]

__version__ = "0.1.0"
