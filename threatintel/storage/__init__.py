"""Storage collaborators: KV counters, blob archive, quota and vectors."""
