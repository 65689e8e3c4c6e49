"""Record store, audit ledger and keyed store."""
