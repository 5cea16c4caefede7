"""Configuration for the ticker ingestor."""
