"""Example scripts for robust radio-source positioning."""
