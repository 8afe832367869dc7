"""HTTP JSON-RPC transport, request signing and rate limiting."""
