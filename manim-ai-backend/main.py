import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from config import CORS_ORIGINS
from pipeline import job_runner
from routers import generation, worker

# --------------------------------------------------------------------------
# --- Configuration & Setup ---
# --------------------------------------------------------------------------

logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    # Background pipelines are tracked by the runner; stop accepting new ones.
    job_runner.shutdown()


app = FastAPI(
    title="Manim Narrated Video Generator",
    description="Turns a prompt into a narrated Manim animation through a background job pipeline.",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(generation.router)
app.include_router(worker.router)


@app.get("/")
def read_root():
    return {"status": "🚀 Manim narrated video generator is running!"}
