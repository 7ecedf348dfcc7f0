"""Shared helpers: error responses, datetime parsing, HTML stripping."""
