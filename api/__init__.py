"""HTTP adapters for the survey link guard."""
