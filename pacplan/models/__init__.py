"""Data models — governed resources, plan records, and plan artifacts."""
