"""
Retail Banking Core

Account ledger, money movement and term-deposit (FD/RD) engine with
atomic units of work, Decimal money maths and a hash-chained audit trail.
"""

__version__ = "1.0.0"
