"""Drivers: concrete implementations of the kernel ports."""
