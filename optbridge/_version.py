"""Version information for optbridge"""

__version__ = "0.3.0"
