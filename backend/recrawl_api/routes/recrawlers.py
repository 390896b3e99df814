"""
Recrawler management routes.

Endpoints for launching a recrawl in the background and checking on it.
"""

import subprocess
import sys
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel


router = APIRouter(prefix="/api/recrawlers", tags=["recrawlers"])

BACKEND_DIR = Path(__file__).parent.parent.parent
LOG_DIR = BACKEND_DIR / "output"
RECRAWLER_SCRIPT = "shopify_recrawler.py"

# Track running recrawler processes: store_key -> Popen
running_recrawlers: Dict[str, subprocess.Popen] = {}


class RunRecrawlerRequest(BaseModel):
    """Request body for triggering a recrawl."""
    store_key: str
    store_url: Optional[str] = None
    input_path: Optional[str] = None
    max_products: Optional[int] = None
    batch_size: Optional[int] = None
    validate_catalog: bool = False


class RunRecrawlerResponse(BaseModel):
    message: str
    pid: int
    store_key: str
    log_file: str


class RecrawlerStatusResponse(BaseModel):
    store_key: str
    is_running: bool
    pid: Optional[int] = None


def is_process_running(process: subprocess.Popen) -> bool:
    """Check if a launched recrawl is still running; reaps it once finished."""
    return process.poll() is None


def clean_stale_processes() -> None:
    """Drop finished recrawls from tracking."""
    finished = [key for key, process in running_recrawlers.items() if not is_process_running(process)]
    for key in finished:
        del running_recrawlers[key]


def build_command(request: RunRecrawlerRequest) -> List[str]:
    cmd = [sys.executable, str(BACKEND_DIR / RECRAWLER_SCRIPT), "--store-key", request.store_key]
    if request.store_url:
        cmd.extend(["--store-url", request.store_url])
    else:
        cmd.extend(["--input", request.input_path])
    if request.max_products is not None:
        cmd.extend(["--max-products", str(request.max_products)])
    if request.batch_size is not None:
        cmd.extend(["--batch-size", str(request.batch_size)])
    if request.validate_catalog:
        cmd.append("--validate")
    return cmd


@router.post("/run", response_model=RunRecrawlerResponse)
def run_recrawler(request: RunRecrawlerRequest):
    """
    Launch a recrawl for a store in a background process.

    Raises:
        HTTPException: 400 without a source, 409 if the store is already being recrawled
    """
    if bool(request.store_url) == bool(request.input_path):
        raise HTTPException(status_code=400, detail="Provide exactly one of store_url or input_path")

    clean_stale_processes()

    if request.store_key in running_recrawlers:
        pid = running_recrawlers[request.store_key].pid
        raise HTTPException(
            status_code=409,
            detail=f"Recrawl for {request.store_key} is already running (PID: {pid})"
        )

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    LOG_DIR.mkdir(parents=True, exist_ok=True)
    log_file = LOG_DIR / f"recrawl_{request.store_key}_{timestamp}.log"

    try:
        with open(log_file, "w") as log_handle:
            process = subprocess.Popen(
                build_command(request),
                cwd=str(BACKEND_DIR),
                stdout=log_handle,
                stderr=subprocess.STDOUT,
                start_new_session=True,
            )
    except OSError as e:
        raise HTTPException(status_code=500, detail=f"Failed to start recrawler: {e}")

    running_recrawlers[request.store_key] = process
    return RunRecrawlerResponse(
        message=f"Started recrawl for {request.store_key}",
        pid=process.pid,
        store_key=request.store_key,
        log_file=str(log_file),
    )


@router.get("/{store_key}/status", response_model=RecrawlerStatusResponse)
def get_recrawler_status(store_key: str):
    """Check whether a recrawl is currently running for a store."""
    clean_stale_processes()
    process = running_recrawlers.get(store_key)
    pid = process.pid if process is not None else None
    return RecrawlerStatusResponse(store_key=store_key, is_running=process is not None, pid=pid)
