"""HTTP API for the FarmLink core."""
