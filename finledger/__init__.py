"""
Household Ledger - Source Package

A shared finance tracker for a small group of trusted users running a
household and two small businesses (a gym and a typing-services shop).

DESIGN PRINCIPLES:
1. AI suggests → Human confirms → Ledger records
2. Every record entering the ledger is complete and validated
3. Derived values (loan status, balances, budget headroom) are recomputed,
   never trusted from storage
4. Every mutation reports exactly one outcome to the user
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Household Ledger Team"
