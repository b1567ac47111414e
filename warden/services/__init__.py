"""Application services around the security core."""
