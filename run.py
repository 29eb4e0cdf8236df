import os
import logging
from pathlib import Path

import uvicorn
from dotenv import load_dotenv

# HOST / PORT / DEV_RELOAD may live in .env next to the engine settings
load_dotenv(Path(__file__).resolve().parent / ".env")

logging.basicConfig(level=logging.INFO, format="%(levelname)-5s [%(name)s] %(message)s")

if __name__ == "__main__":
    reload = os.environ.get("DEV_RELOAD", "0") == "1"
    host = os.environ.get("HOST", "0.0.0.0")
    port = int(os.environ.get("PORT", "8000"))
    uvicorn.run("phase_engine.server:app", host=host, port=port, reload=reload)
