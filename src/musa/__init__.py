"""MuSA backend: schema-driven MongoDB document API with map consistency."""

__version__ = "0.3.0"
