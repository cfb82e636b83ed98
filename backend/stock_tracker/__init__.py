"""Stock ledger service: holdings, valuation, performance and CSV import."""

__version__ = "0.1.0"
