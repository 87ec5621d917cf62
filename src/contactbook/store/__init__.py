"""Storage backends for contact collections, the audit log and the tag registry."""
