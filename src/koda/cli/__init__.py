"""Interactive terminal client for the documentation assistant."""
