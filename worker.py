import asyncio
import logging
import signal
from docchat.config import get_settings
from docchat.db.mongo import db
from docchat.dependencies import build_services
from docchat.ingestion.worker import IngestionWorker

logging.basicConfig(level=logging.INFO)
# Suppress noisy docling logs
logging.getLogger("docling").setLevel(logging.WARNING)

logger = logging.getLogger("worker")

import threading
import os
from http.server import HTTPServer, BaseHTTPRequestHandler

class HealthHandler(BaseHTTPRequestHandler):
    def do_GET(self):
        self.send_response(200)
        self.end_headers()
        self.wfile.write(b"OK")

    def log_message(self, format, *args):
        pass

def start_health_check():
    # Logic: Use PORT if set (Production/Render), else WORKER_PORT (Local), else 10000.
    port = int(os.getenv("PORT", os.getenv("WORKER_PORT", 10000)))
    server = HTTPServer(("0.0.0.0", port), HealthHandler)
    thread = threading.Thread(target=server.serve_forever)
    thread.daemon = True
    thread.start()
    logger.info(f"Health check server listening on port {port}")

async def run():
    settings = get_settings()
    await db.connect()
    services = build_services(db, settings)
    await services.queue.ensure_indexes()

    worker = IngestionWorker(
        services.queue,
        services.ingestion,
        concurrency=settings.WORKER_CONCURRENCY,
        poll_interval=settings.WORKER_POLL_INTERVAL_SECONDS,
        lease_renewal_interval=settings.QUEUE_LEASE_SECONDS / 3,
    )
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, worker.stop)

    try:
        await worker.start()
    finally:
        await db.close()

if __name__ == "__main__":
    # Start the dummy server immediately to satisfy Render's port binding requirement
    start_health_check()
    asyncio.run(run())
