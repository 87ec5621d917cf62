"""Contact domain: records, audit events, lifecycle, search and duplicate detection."""
