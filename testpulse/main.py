from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from testpulse.core.config import settings, logger
from testpulse.db.factory import from_env
from testpulse.routes import router as api_router


@asynccontextmanager
async def lifespan(app: FastAPI):
    # configuration errors surface here and stop the server
    app.state.gateway = from_env()
    app.state.gateway.initialize()
    logger.info("Storage initialized")
    yield


app = FastAPI(title="testpulse", version=settings.VERSION, lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)
app.include_router(api_router)


# include health check
@app.get("/", tags=["health"])
async def health_check():
    return {"message": "ok", "version": settings.BUILD_VERSION}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
