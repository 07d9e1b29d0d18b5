import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from .routers import documents, signing_requests, signing
from .config import LOG_LEVEL
from .db import init_db

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

app = FastAPI(title="Signing API (field assignment + PDF population)")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.on_event("startup")
def on_startup():
    init_db()

app.include_router(documents.router, prefix="/api/documents", tags=["documents"])
app.include_router(signing_requests.router, prefix="/api/signing-requests", tags=["signing-requests"])
app.include_router(signing.router, prefix="/api/sign", tags=["signing"])

@app.get("/")
def root():
    return {"ok": True, "service": "signing-api"}
