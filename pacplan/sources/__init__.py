"""Desired state sources — the authored policy-as-code files."""
