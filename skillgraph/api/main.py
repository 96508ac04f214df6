import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from skillgraph.api.routes import github, health, intelligence, queue
from skillgraph.core.config import configure_logging

configure_logging()

app = FastAPI(title="skillgraph API", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv("CORS_ALLOW_ORIGINS", "http://localhost:5173").split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.router)
app.include_router(github.router)
app.include_router(queue.router)
app.include_router(intelligence.router)
