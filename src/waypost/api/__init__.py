"""HTTP layer: federation endpoints and the client API."""
