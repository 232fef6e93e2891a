"""HTTP surface for the sync engine."""
