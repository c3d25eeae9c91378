"""
NeoWealth Core - Source Package

The business-logic core of the NeoWealth personal-finance app:
NeoCoin reward wallet, transactions, savings goals, group savings
("Hives") and the keyword heuristics behind the "AI" features.

DESIGN PRINCIPLES:
1. Engines are pure: plain models in, plain models out
2. Every balance change goes through the ledger engine
3. Related writes commit together or not at all
4. Every step must be auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "NeoWealth Team"
