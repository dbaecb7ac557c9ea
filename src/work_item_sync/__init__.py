"""Work item synchronizer between issue-tracking systems."""

__version__ = "0.1.0"
