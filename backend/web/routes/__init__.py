"""API routers (auth, courses, chat)."""
