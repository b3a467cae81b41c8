"""Storage adapters implementing ``SupportsCollectionStorage``."""
