"""
ExpenseSight Data - Source Package

The data cache and write-coordination layer between the ExpenseSight UI
and its remote document store.

DESIGN PRINCIPLES:
1. Reads degrade, writes report
2. The cache never shows state older than an acknowledged write
3. No silent corrections
4. Every remote write is auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "ExpenseSight Team"
