"""Voice session engine -- per-call sessions, lifecycle, and the turn pipeline."""
