"""Core types shared across the driver."""
