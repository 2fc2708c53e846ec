"""
Lisa Chat Backend Runner
Run with: python run.py
"""

import uvicorn
from lisa.config import settings


if __name__ == "__main__":
    print(f"""
    ╔══════════════════════════════════════════════════════════╗
    ║                       Lisa Chat                          ║
    ║          Train Maintenance Assistant Backend             ║
    ╚══════════════════════════════════════════════════════════╝

    Starting server at http://{settings.HOST}:{settings.PORT}

    API Documentation: http://localhost:{settings.PORT}/docs
    """)

    uvicorn.run(
        "lisa.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower()
    )
