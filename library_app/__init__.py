"""Library App - Lending Service Package

This package contains the core application modules including:
- Loan ledger and its state machine (ledger.py)
- Fine computation (fines.py)
- Catalog, identity, wishlist and report stores (services/)
- API endpoints (api.py)
- CLI interface (cli.py)
- Database layer (database.py)
"""

__version__ = "1.0.0"
