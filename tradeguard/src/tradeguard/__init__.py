"""
Trading-integrity layer for the peer-to-peer energy marketplace.

This package keeps trades within registered capacity, prevents published
inventory from being oversold, and reconciles local settlement records
with the external settlement ledger.  The long-running piece is the
settlement poller started from ``worker_main.py``; the limit validator
and inventory ledger are called inline by the order flow.
"""

__version__ = "0.1.0"
