"""Multi-tenant contact book core: lifecycle, audit trail, search and duplicate detection."""
