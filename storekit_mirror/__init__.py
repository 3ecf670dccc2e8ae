"""StoreKit Mirror - observable in-app purchase entitlements over a store platform."""

__version__ = "0.1.0"
