"""Configuration and error hierarchy."""
