"""snapshot-doctor: gap filling and cumulative repair for monitoring snapshot workbooks."""

__version__ = "0.1.0"
