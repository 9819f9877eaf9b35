"""Product entitlements granted by paid orders."""
