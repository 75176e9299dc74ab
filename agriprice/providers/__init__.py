"""External price providers."""
