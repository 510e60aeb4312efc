"""
Marketplace core: subscription entitlements, listing reservations and wallets.
"""

__version__ = "0.1.0"
