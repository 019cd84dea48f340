"""
PDF to XML conversion service.

This package provides a FastAPI application that converts uploaded PDFs to
XML and keeps a searchable per-user history, backed by MongoDB with an
in-memory fallback while the database is unreachable.
"""
