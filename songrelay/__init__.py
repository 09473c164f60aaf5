"""
songrelay: downloads songs, tags them, and relays them to a chat through the Bot API.
"""

__version__ = "1.1.0"
