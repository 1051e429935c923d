"""
Token Ledger

A single-contract fungible token ledger: balances and allowances held in
the contract's own state, mutated only through a serialized request loop,
with ordered Transfer/Approval notifications and a hash-chained audit trail.
"""

__version__ = "1.0.0"
