"""
Farmbook Kernel

Shared foundations for the Vietnamese tax and payroll engine:
- Whole-đồng Money arithmetic with a single rounding policy
- Versioned tax rules and the registry that resolves them by date
- Typed, coded exceptions
- Structured JSON logging
- A read-only SQLAlchemy rule store
"""

__version__ = "0.1.0"
