"""Services domain: command-line interface."""
