"""
Vittas - Source Package

The core of a personal finance app: group expense sharing and tiered
subscriptions.

DESIGN PRINCIPLES:
1. Shares always add up to the total, to the cent
2. Multi-row writes are atomic or don't happen
3. Fail towards the least-privileged tier
4. Every change to shared money is auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Vittas Team"
