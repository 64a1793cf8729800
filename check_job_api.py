"""
Smoke script for a running CommentSync server.

Creates a job for a source/target file pair, starts it, and polls its
status until it finishes.

Usage:
    uvicorn commentsync.main:app --reload
    python check_job_api.py <account_id> <source_file_id> <target_file_id> [sensitivity]
"""

import os
import sys
import time

import requests

# Configuration
API_BASE = os.getenv("COMMENTSYNC_API", "http://localhost:8000/api")
TERMINAL = {"completed", "completed_with_errors", "failed"}


def create_job(account_id: str, source_file_id: str, target_file_id: str, sensitivity: str) -> str:
    """Create a pending job and return its id"""
    print(f"\n📋 Creating job: {source_file_id} → {target_file_id} ({sensitivity})")
    try:
        response = requests.post(
            f"{API_BASE}/jobs",
            json={
                "account_id": account_id,
                "source_file_id": source_file_id,
                "target_file_id": target_file_id,
                "sensitivity": sensitivity,
            },
            timeout=10,
        )
        response.raise_for_status()
    except requests.RequestException as e:
        print(f"  ✗ Job creation failed: {e}")
        return None

    job_id = response.json().get("job_id")
    print(f"  ✓ Job created: {job_id}")
    return job_id


def start_job(job_id: str) -> bool:
    try:
        response = requests.post(f"{API_BASE}/jobs/{job_id}/process", timeout=10)
        response.raise_for_status()
    except requests.RequestException as e:
        print(f"  ✗ Could not start job: {e}")
        return False
    print("  ✓ Job started")
    return True


def monitor_job(job_id: str, max_wait: int = 1800):
    """Poll the job until it reaches a terminal state"""
    print(f"\n⏳ Monitoring job: {job_id}")

    start_time = time.time()
    last_progress = -1

    while time.time() - start_time < max_wait:
        try:
            response = requests.get(f"{API_BASE}/status/{job_id}", timeout=10)
            response.raise_for_status()
            status = response.json()
        except requests.RequestException as e:
            print(f"  ✗ Status check failed: {e}")
            time.sleep(2)
            continue

        progress = status.get("progress", 0)
        if progress != last_progress:
            print(f"  [{progress}%] {status.get('message', '')}")
            last_progress = progress

        job_status = status.get("status")
        if job_status in TERMINAL:
            if job_status == "failed":
                print(f"\n❌ Job failed: {status.get('error', 'Unknown error')}")
                return False
            print(f"\n✅ Job {job_status}")
            print(f"  Matches found: {status.get('matches_found', 0)}")
            print(f"  Comments transferred: {status.get('comments_transferred', 0)}")
            return job_status == "completed"

        time.sleep(2)  # Poll every 2 seconds

    print(f"\n⏱ Timeout reached ({max_wait}s)")
    return False


def main():
    print("=" * 80)
    print("🧪 CommentSync - Job API Check")
    print("=" * 80)

    if len(sys.argv) < 4:
        print(__doc__)
        return 2

    try:
        response = requests.get(f"{API_BASE.replace('/api', '')}/", timeout=5)
        response.raise_for_status()
        print("✅ API is online")
    except requests.RequestException:
        print("❌ Cannot connect to API. Please start the backend server:")
        print("   uvicorn commentsync.main:app --reload")
        return 1

    account_id, source_file_id, target_file_id = sys.argv[1:4]
    sensitivity = sys.argv[4] if len(sys.argv) > 4 else "medium"

    job_id = create_job(account_id, source_file_id, target_file_id, sensitivity)
    if not job_id or not start_job(job_id):
        return 1
    return 0 if monitor_job(job_id) else 1


if __name__ == "__main__":
    sys.exit(main())
