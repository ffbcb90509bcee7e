"""HTTP surface for account intelligence."""
