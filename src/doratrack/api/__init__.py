"""HTTP reporting layer."""
