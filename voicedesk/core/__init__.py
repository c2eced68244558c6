"""Per-call session state, dialogue stages and real-time turn handling."""
