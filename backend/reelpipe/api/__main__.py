"""API server entry point for python -m reelpipe.api"""
import uvicorn
from reelpipe.config import settings

if __name__ == "__main__":
    uvicorn.run(
        "reelpipe.api.app:app",
        host=settings.server.host,
        port=settings.server.port,
        reload=False,
    )
