"""
FastAPI Backend - Main Application
Comment relocation between video versions
"""

from dotenv import load_dotenv
load_dotenv()  # This reads .env and sets environment variables

import shutil
import subprocess
import uuid
from typing import Optional

from fastapi import BackgroundTasks, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from commentsync.core import ServiceContainer, get_config, get_container, process_job
from commentsync.core.exceptions import AuthError, PlatformAPIError, VersionStackError
from commentsync.models import JobState, JobStatusResponse, ProcessingJob

config = get_config()

app = FastAPI(
    title="CommentSync",
    description="Relocates review comments from one video version to the next using perceptual frame hashes",
    version="0.1.0",
)

print(f"🔒 CORS allowed origins: {list(config.cors_origins)}")

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(config.cors_origins),
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)


class CreateJobRequest(BaseModel):
    account_id: str
    source_file_id: str
    target_file_id: str
    sensitivity: Optional[str] = None


def _check_binary(label: str, path: str, health_issues: list) -> None:
    print(f"   Checking {label}...", end=" ")
    if not shutil.which(path):
        print("✗")
        health_issues.append(f"{label} not found at '{path}'. Install FFmpeg or set {label.upper()}_PATH.")
        return
    try:
        result = subprocess.run([path, "-version"], capture_output=True, text=True, timeout=10)
        version = result.stdout.split("\n")[0] if result.stdout else "unknown"
        print(f"✓ ({version[:40]})")
    except (OSError, subprocess.SubprocessError) as e:
        print("✗")
        health_issues.append(f"{label} found but not working: {e}")


@app.on_event("startup")
async def startup():
    """
    Verify dependencies before accepting jobs.

    First Principles:
    - Fail loudly: better to see a missing decoder on startup than mid-job
    - Clear errors: tell the operator exactly what's missing
    """
    print("=" * 60)
    print("🚀 Starting CommentSync")
    print("=" * 60)

    print("\n🔍 Running dependency health checks...")
    health_issues = []

    _check_binary("FFmpeg", config.ffmpeg_path, health_issues)
    _check_binary("FFprobe", config.ffprobe_path, health_issues)

    print("   Checking Frame.io API base URL...", end=" ")
    if config.frameio_api_base_url:
        print(f"✓ ({config.frameio_api_base_url})")
    else:
        print("✗")
        health_issues.append("FRAMEIO_API_BASE_URL is empty")

    print("   Checking data directory...", end=" ")
    try:
        config.data_dir.mkdir(parents=True, exist_ok=True)
        print(f"✓ ({config.data_dir})")
    except OSError as e:
        print("✗")
        health_issues.append(f"Cannot create data dir {config.data_dir}: {e}")

    health_issues.extend(config.validate())

    if health_issues:
        print("\n⚠️ Health check issues:")
        for issue in health_issues:
            print(f"   - {issue}")
    else:
        print("\n✓ All dependency checks passed")

    config.print_summary()


async def check_version_stack(container: ServiceContainer, request: CreateJobRequest) -> None:
    """
    Reject a source/target pair that are not versions in one stack.

    401 for missing or rejected credentials, 422 for a mismatched pair,
    502 when Frame.io itself fails.
    """
    if not container.config.require_version_stack:
        return
    tokens = container.get_token_store()
    session = tokens.load(request.account_id)
    if session is None:
        raise HTTPException(status_code=401, detail=f"No Frame.io credentials for account {request.account_id}")

    client = container.get_client()
    try:
        fresh = await client.ensure_fresh(session)
        if fresh != session:
            tokens.save(request.account_id, fresh)
        await client.validate_version_stack(
            fresh, request.account_id, request.source_file_id, request.target_file_id,
        )
    except AuthError as e:
        raise HTTPException(status_code=401, detail=str(e))
    except VersionStackError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except PlatformAPIError as e:
        raise HTTPException(status_code=502, detail=str(e))


@app.get("/")
async def root():
    return {"service": "CommentSync", "status": "running"}


@app.post("/api/jobs", response_model=JobStatusResponse)
async def create_job(request: CreateJobRequest):
    """Create a pending job (normally done by the platform integration)."""
    sensitivity = (request.sensitivity or config.default_sensitivity).lower()
    if sensitivity not in ("high", "medium", "low"):
        raise HTTPException(status_code=422, detail=f"Unknown sensitivity: {sensitivity}")

    container = get_container()
    await check_version_stack(container, request)

    job = ProcessingJob(
        id=str(uuid.uuid4()),
        account_id=request.account_id,
        source_file_id=request.source_file_id,
        target_file_id=request.target_file_id,
        sensitivity=sensitivity,
    )
    container.get_job_store().save(job)
    print(f"📦 Created job {job.id}: {job.source_file_id} → {job.target_file_id} ({sensitivity})")
    return JobStatusResponse.from_job(job)


@app.post("/api/jobs/{job_id}/process", response_model=JobStatusResponse)
async def start_job(job_id: str, background_tasks: BackgroundTasks):
    """Run a pending job in the background."""
    job = get_container().get_job_store().load(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    if job.status != JobState.PENDING:
        raise HTTPException(status_code=409, detail=f"Job is {job.status.value}, not pending")

    background_tasks.add_task(process_job, job_id)
    return JobStatusResponse.from_job(job)


@app.get("/api/status/{job_id}", response_model=JobStatusResponse)
async def get_status(job_id: str):
    """Get job status"""
    job = get_container().get_job_store().load(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return JobStatusResponse.from_job(job)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
