"""FastAPI surface of the conflict check engine."""
