"""CI build-log resolution, classification and concurrent fetching."""
