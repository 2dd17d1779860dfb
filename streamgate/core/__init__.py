"""Core types shared across streamgate."""
