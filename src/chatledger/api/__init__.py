"""HTTP API for chatledger."""
