"""HTTP surface for matching and triage."""
