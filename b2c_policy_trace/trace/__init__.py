"""Journey recorder telemetry: clips, interpreters, trace steps and flows."""
