"""Configuration for the wellness chat orchestrator."""
