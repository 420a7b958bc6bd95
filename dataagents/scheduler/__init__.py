"""Auto-apply scheduling: frequency configuration and the scheduler loop."""
