"""
ClearOut Identify

Identify a household item from photos and recommend whether to sell,
give, recycle, or ask for more information.
"""

__version__ = "1.0.0"
