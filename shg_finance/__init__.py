"""
SHG Finance Core

Self-help-group microfinance engine: member savings cycles, loan origination,
amortization, installment repayment tracking, pre-closure and an append-only
group ledger whose balance is always derived from its entries.
"""

__version__ = "0.1.0"
