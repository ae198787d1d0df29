"""
Services package for the Imit8 emotion game.

This package contains service modules for storage and external calls:
- Identity store: per-wallet key-value storage and the recent captures wall
- Attempt limiter: fixed-window rounds per wallet
- Content upload: capture image + metadata pinning
- Reward transfer: payout relay for round rewards
- Azure Face API: Face detection and emotion analysis (optional)
"""
