"""
Cheque Bank

Settlement of off-chain signed cheques: payers sign a commitment to a
payment, payees later redeem it against pooled internal balances with
exactly-once, replay-protected semantics and a hash-chained audit trail.
"""

__version__ = "1.0.0"
