"""
Promotional stock inventory.

Models:
- StockItem (registry entry; `quantity` is the nominal central-pool total)
- StockAllocation (quantity of an item held by one user, outside the central pool)
- StockMovement (append-only record of every transfer between central pool and users)
"""
