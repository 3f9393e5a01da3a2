"""Version information for the intents solver.

Update this file when creating new releases.
"""

__version__ = "0.1.0"
