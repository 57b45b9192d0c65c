"""
Inventory ledger tables.

- ProductStock: current quantity of a product at a location (the projection)
- StockMovement: append-only ledger rows that explain every quantity change
"""
