"""
Money Ledger

Embedded ledger storage for users, accounts and money movements.

The storage layer is the only place where money can be lost or duplicated,
so everything here is organised around three rules:
1. Every touch of the database goes through one guarded connection
2. A balance change and its ledger record commit together or not at all
3. The schema only moves forward through ordered, recorded migrations
"""

__version__ = "0.3.0"
