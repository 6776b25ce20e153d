"""
PartSync - Turn14 catalog, inventory and fitment sync for Shopify storefronts.
"""

__version__ = "0.1.0"
