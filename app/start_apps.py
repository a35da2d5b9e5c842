"""
Startup script for the API, the Celery worker and Celery beat.
Manages all three services with proper logging and error handling.
"""

import multiprocessing
import subprocess
import sys
import time
import signal
from pathlib import Path

# Add the parent directory to Python path to import app modules
sys.path.insert(0, str(Path(__file__).parent.parent))

from app.config.settings import settings
from app.utils.logging import get_logger

logger = get_logger()

PROJECT_ROOT = str(Path(__file__).parent.parent)


def setup_signal_handlers():
    """Setup signal handlers for graceful shutdown"""

    def signal_handler(signum, frame):
        logger.info(f"Received signal {signum}, initiating shutdown...")
        raise KeyboardInterrupt

    signal.signal(signal.SIGTERM, signal_handler)
    signal.signal(signal.SIGINT, signal_handler)


def _run_service(name: str, command: list):
    try:
        logger.info(f"Starting {name} process")
        subprocess.run(command, check=True, cwd=PROJECT_ROOT)
    except subprocess.CalledProcessError as e:
        logger.error(f"{name} process failed with return code {e.returncode}: {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info(f"{name} process interrupted by user")
    except Exception as e:
        logger.error(f"Unexpected error in {name} process: {e}")
        sys.exit(1)


def run_fastapi_app():
    """Run FastAPI server"""
    _run_service(
        "FastAPI",
        [
            sys.executable,
            "-m",
            "uvicorn",
            "app.main:app",
            "--host",
            "0.0.0.0",
            "--port",
            "8000",
        ],
    )


def run_celery_worker():
    """Run Celery worker consuming the notifier queue"""
    _run_service(
        "Celery worker",
        [
            sys.executable,
            "-m",
            "celery",
            "-A",
            "app.celery",
            "worker",
            "--loglevel=info",
            "-Q",
            settings.NOTIFIER_QUEUE_NAME,
        ],
    )


def run_celery_beat():
    """Run Celery beat, the periodic trigger for the birthday scan"""
    _run_service(
        "Celery beat",
        [
            sys.executable,
            "-m",
            "celery",
            "-A",
            "app.celery",
            "beat",
            "--loglevel=info",
        ],
    )


def check_redis_connection():
    """Check if Redis server is accessible"""
    try:
        from app.services.idempotency_gate import get_redis_client

        get_redis_client().ping()
        logger.info("Redis connection successful")
        return True
    except Exception as e:
        logger.error(f"Redis connection failed: {e}")
        logger.error("Please ensure Redis server is running")
        return False


def monitor_processes(processes):
    """Monitor running processes and handle failures"""
    logger.info("Starting process monitoring")

    while True:
        for process in processes:
            if not process.is_alive():
                exit_code = process.exitcode
                logger.error(
                    f"{process.name} process died unexpectedly with exit code: {exit_code}"
                )

                # Terminate remaining processes
                terminate_processes(processes)
                sys.exit(1)

        time.sleep(1)


def terminate_processes(processes):
    """Gracefully terminate all processes; the worker finishes in-flight tasks on SIGTERM"""
    logger.info("Initiating graceful shutdown of all services")

    for process in processes:
        if process.is_alive():
            logger.info(f"Terminating {process.name} process")
            process.terminate()

    for process in processes:
        try:
            process.join(timeout=30)
            if process.is_alive():
                logger.warning(
                    f"{process.name} did not terminate gracefully, force killing"
                )
                process.kill()
                process.join()
            else:
                logger.info(f"{process.name} terminated successfully")
        except Exception as e:
            logger.error(f"Error terminating {process.name}: {e}")


def main():
    """Main function to start and manage the API, worker and beat"""
    multiprocessing.freeze_support()

    setup_signal_handlers()

    logger.info("=" * 60)
    logger.info(f"Starting {settings.NAME} (FastAPI + Celery worker + Celery beat)")
    logger.info("=" * 60)
    logger.info("Press Ctrl+C to stop all services")

    if not check_redis_connection():
        logger.error("Cannot start services without Redis connection")
        sys.exit(1)

    processes = []

    try:
        for name, target in (
            ("FastAPI", run_fastapi_app),
            ("CeleryWorker", run_celery_worker),
            ("CeleryBeat", run_celery_beat),
        ):
            process = multiprocessing.Process(target=target, name=name, daemon=False)
            process.start()
            processes.append(process)

        logger.info("All services started successfully")
        logger.info("FastAPI server: http://localhost:8000")
        logger.info("-" * 60)

        monitor_processes(processes)

    except KeyboardInterrupt:
        logger.info("Shutdown signal received")
    except Exception as e:
        logger.error(f"Unexpected error in main process: {e}")
    finally:
        terminate_processes(processes)
        logger.info("All services stopped successfully")


if __name__ == "__main__":
    main()
