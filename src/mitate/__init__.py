"""Mitate - settlement core for weighted parimutuel prediction markets."""

__version__ = "0.1.0"
