"""Application package for the GradeFlow grade-tracking backend.

This package exposes the service, repository and model modules used by
the FastAPI application. The ordering of lessons and grading-period
markers lives in `ordering`, weighted grade aggregation in `reports` and
JSON backups in `backups`; individual modules contain the concrete
implementations and documentation.
"""
