#!/usr/bin/env python3
"""
Local development server for the product stats indexer API.
Run a Celery worker with beat alongside it to process scheduled-mode changelogs:

    celery -A stats_indexer.infrastructure.celery_app.celery_app worker -B
"""

import os
import sys
from pathlib import Path

# Load environment variables from .env file
from dotenv import load_dotenv
load_dotenv()

# Add src to Python path
current_dir = Path(__file__).parent
src_dir = current_dir / "src"
sys.path.insert(0, str(src_dir))

os.environ.setdefault('ENVIRONMENT', 'development')
# Local runs create tables on startup unless migrations are managed by alembic
os.environ.setdefault('MIGRATE_ON_START', 'true')

if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("API_PORT", "8000"))
    print("Starting product stats indexer API")
    print(f"Docs: http://localhost:{port}/docs")
    print(f"Index status: http://localhost:{port}/admin/indexes")
    print("Press Ctrl+C to stop\n")

    uvicorn.run(
        "stats_indexer.api.main:app",
        host=os.getenv("API_HOST", "0.0.0.0"),
        port=port,
        reload=True,
        log_level="info"
    )
