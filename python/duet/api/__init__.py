"""HTTP surface for the messaging subsystem."""
