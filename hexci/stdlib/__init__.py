"""Standard library: storage adapters, run registry, caches and built-in actions."""
