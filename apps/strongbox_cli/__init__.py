"""strongbox command-line interface."""
