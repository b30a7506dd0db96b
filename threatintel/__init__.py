"""Budgeted AI analysis of security news into structured threat intelligence."""

__version__ = "0.1.0"
