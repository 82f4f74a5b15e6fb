"""FastAPI routers for the chat relay API."""
