"""
Billing Kernel

Shared infrastructure for the invoicing platform:
- SQLAlchemy base, engine and session management
- Injectable clocks
- Typed exception hierarchy
- Structured JSON logging
- Invoice, activity and access collaborators
"""

__version__ = "0.1.0"
