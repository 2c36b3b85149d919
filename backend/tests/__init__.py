"""
pytest suite for the paysync backend.

Test categories:
- Unit tests: pure functions and single services with fakes
- Integration tests: services against a file-backed SQLite database
- API tests: the FastAPI app through httpx.ASGITransport
"""
