"""Resumable chunked import of site spreadsheets."""
