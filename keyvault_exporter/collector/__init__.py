"""Collection engine: walker, observation builder, orchestrator and scheduler."""
