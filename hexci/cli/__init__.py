"""hexci command-line interface."""
