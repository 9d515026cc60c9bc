"""
Ledger backend: credit balances, credit transactions and job status records.
"""
