"""FastAPI surface for the lane check-in core."""
