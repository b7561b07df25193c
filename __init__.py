"""
bbo-cardplay
============
Tools for collecting and scoring the cardplay of BBO hand records.

This package provides functionality to:
- Decode LIN hand records into deals, auctions and play
- Resolve shortened hand links at a polite, resumable pace
- Add cardplay and per-card double-dummy cost columns to CSV exports
- Summarize play errors per player against a field baseline
- Show single hands for spot-checking and anonymize player names
"""

__version__ = "0.1.0"

# Note: With a flat module structure, imports should be done directly:
# Example:
#   from lin_parse import parse_lin
#   from row_pipeline import fetch_cardplay, analyze_dd
#   from common_objects import HandRecord, Direction
