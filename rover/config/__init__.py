"""Configuration for rover-agent runtime."""
