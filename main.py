# Local runner: python main.py
import uvicorn

from farmplot.config import settings

if __name__ == "__main__":
    uvicorn.run(
        "farmplot.main:app",
        host="127.0.0.1",
        port=8000,
        log_level=settings.log_level.lower(),
        reload=False,
    )
