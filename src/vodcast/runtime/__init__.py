"""Channel runtime: scheduling, shared state and coordination."""
