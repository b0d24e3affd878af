"""HTTP routers for the fencer status API."""
