"""
slotbooker - availability projection and conflict-free booking engine.
"""

__version__ = "0.1.0"
