"""Role catalog, role resolution, access gate and attempt throttling."""
