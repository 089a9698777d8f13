"""
CreditSwap API - converts internal credits to BTC via a SOL settlement leg.

Provides:
- Credit balances and admin top-ups
- Swap orchestration (credit debit -> SOL transfer -> SOL/BTC bridge)
- Status reconciliation against the bridge provider
"""

__version__ = "0.1.0"
