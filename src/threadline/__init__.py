"""Threadline: IMAP ingestion that threads mail into projects."""

__version__ = "0.1.0"
