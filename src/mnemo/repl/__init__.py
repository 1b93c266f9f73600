"""Interactive session host."""
