"""
Deterministic parsing and export rules.

This file exists to make the reader/writer contract explicit and enforceable.
"""

NORMALIZED_DELIMITER = ","
OUTPUT_LINE_TERMINATOR = "\r\n"

# Delimiters the reader will consider when sniffing; anything else falls back to comma.
CANDIDATE_DELIMITERS = [",", ";", "\t", "|"]
SNIFF_SAMPLE_CHARS = 4096

DEFAULT_PREVIEW_ROWS = 5
DEFAULT_EXPORT_FILENAME = "export.csv"

# Largest single cell the reader accepts; raised further to the request limit at startup.
MAX_FIELD_CHARS = 10 * 1024 * 1024
