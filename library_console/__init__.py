"""Library Console - lending-state synchronization for the library dashboards

This package contains:
- Data models for books, loans, users and catalog pages (models.py)
- The error taxonomy surfaced to the dashboards (errors.py)
- Lending API clients (services/)
- Dashboard view state and its coordinator (view_state.py)
"""

__version__ = "1.0.0"
