# exam_portal/main.py

# ------------------------
# load environment
# ------------------------
from dotenv import load_dotenv
load_dotenv()

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from exam_portal.config import settings
from exam_portal.routers import auth as auth_router
from exam_portal.routers import module_access as module_access_router

# ------------------------
# 1) logging
# ------------------------
logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

# ------------------------
# 2) FastAPI app
# ------------------------
app = FastAPI(title="Mock Exam Portal API")

# ------------------------
# 3) CORS
#    - open for development
#    - restrict origins in production
# ------------------------
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,  # bearer tokens, no cookies
    allow_methods=["*"],
    allow_headers=["*"],
)

# ------------------------
# 4) routers
# ------------------------
app.include_router(auth_router.router)
app.include_router(module_access_router.router)

# ------------------------
# 5) health check
# ------------------------
@app.get("/")
def root():
    return {"ok": True}
