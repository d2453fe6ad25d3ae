"""Library App - Services Package

Stores that sit around the loan ledger:
- Catalog store (books and their availability counters)
- Identity store (users, roles, credentials)
- Wishlist store
- Report service (dashboard statistics and admin reports)
"""
