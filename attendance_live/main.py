# /attendance_live/main.py
import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

# --- Core / DB ---
from attendance_live.db.session import init_models

# --- API Routers ---
from attendance_live.api.routes import session as session_router


logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(levelname)s - %(message)s",
    force=True
)


# --- Lifespan (애플리케이션 시작/종료 이벤트) ---
@asynccontextmanager
async def lifespan(app: FastAPI):
    init_models()  # 테이블이 없으면 생성
    yield


# --- FastAPI App Instance ---
app = FastAPI(
    title="Live Attendance API",
    lifespan=lifespan
)


@app.middleware("http")
async def add_process_time_header(request: Request, call_next):
    start_time = time.time()

    response = await call_next(request)

    process_time = time.time() - start_time
    response.headers["X-Process-Time"] = str(process_time)

    logging.info(
        f"Request processed: {request.method} {request.url.path} - {response.status_code} - Completed in {process_time:.4f} secs"
    )

    return response


# --- CORS 미들웨어 설정 ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# --- 라우트 등록 ---
app.include_router(
    session_router.router,
    prefix="/api/v1/session",
    tags=["attendance-session"]
)
