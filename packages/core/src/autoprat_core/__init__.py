"""Core library for autoprat: PR records, CI summaries and the CI build-log fetcher."""
