import logging

from fastapi import FastAPI

from solo_rpg.api.routes import router

app = FastAPI(title="solo-rpg-ai", version="0.1.0")
app.include_router(router)
# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@app.get("/info")
async def info() -> dict[str, str]:
    return {"name": "solo-rpg-ai", "version": "0.1.0"}
