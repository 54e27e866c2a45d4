"""Discogs gateway: rate-limited upstream access and SSRF-safe image fetching."""
