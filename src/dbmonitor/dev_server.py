"""Local development server for the monitor API."""
import os
from dotenv import load_dotenv


def main():
    load_dotenv()
    import uvicorn
    from dbmonitor.config import get_settings

    settings = get_settings()
    print(f"PostgreSQL Fleet Monitor API on http://{settings.api_host}:{settings.api_port}/docs")
    print("Workers: celery -A dbmonitor.infrastructure.celery_app worker -B")
    uvicorn.run(
        "dbmonitor.api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=os.getenv("RELOAD", "1") == "1",
    )


if __name__ == "__main__":
    main()
