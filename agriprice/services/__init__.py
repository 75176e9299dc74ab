"""Resolution, caching and trend services."""
