"""Object store interface and implementations."""
