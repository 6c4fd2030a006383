"""tiergate tests."""
