"""Domain types: roles, module access, snapshots, decisions and audit entries."""
