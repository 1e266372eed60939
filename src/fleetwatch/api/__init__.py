"""HTTP surface over the telemetry engine."""
