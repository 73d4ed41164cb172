"""Migration services: persistence, matching, retries and batch scheduling."""
