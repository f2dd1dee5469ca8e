"""
Command-line scripts for AD housekeeping.

Subpackages:
- housekeeping: the ad-housekeeping runner
"""

__version__ = "0.1.0"
