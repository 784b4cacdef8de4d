"""Ledger wire formats, transaction builders, clients and the sync worker."""
