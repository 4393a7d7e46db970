"""HTTP and WebSocket surface for docweave."""
