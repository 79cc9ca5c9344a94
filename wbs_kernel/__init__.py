"""
WBS Kernel

Domain types, Decimal numeric kernel, typed exceptions and structured
logging shared by the work-breakdown-structure engines:
- Flat, parent-referenced line items (categories and priced items)
- Round-half-away-from-zero money arithmetic with explicit truncation
- Diagnostics instead of failures for recoverable data problems
"""

__version__ = "0.1.0"
