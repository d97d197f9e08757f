"""FastAPI application exposing script submission, job status and cancellation."""
