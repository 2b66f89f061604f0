"""Package marker for the lead runner service.

Drives one Sales Navigator scrape job at a time and persists its progress.
"""

__version__ = "0.1.0"
