"""Main entry point for the snake classifier server."""

import logging
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI

from . import __version__
from .config import SessionConfig
from .routers import classify, health, session
from .services.session import ModelLoader

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


def create_app(
    config: Optional[SessionConfig] = None,
    model_loader: Optional[ModelLoader] = None,
) -> FastAPI:
    """Build the FastAPI app around one classifier session.

    Args:
        config: Session configuration (defaults to SessionConfig.from_env())
        model_loader: Optional replacement for the file-based model loader
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager."""
        logger.info("Starting snake classifier server...")
        session_config = config or SessionConfig.from_env()

        from .services.device_manager import DeviceManager, get_device_manager
        device_manager = (get_device_manager() if session_config.device == "auto"
                          else DeviceManager(session_config.device))
        app.state.device_manager = device_manager

        from .services.session import ClassifierSession
        classifier_session = ClassifierSession(
            config=session_config,
            model_loader=model_loader,
            device_manager=device_manager,
        )
        app.state.session = classifier_session

        # Loading runs in the background; requests are dropped until READY
        classifier_session.start()

        from .services.inference_service import InferenceService
        app.state.inference_service = InferenceService(classifier_session)
        logger.info("Classifier session created on device: %s",
                    device_manager.device_type)

        yield

        logger.info("Shutting down snake classifier server...")
        classifier_session.close()

    app = FastAPI(
        title="Snake Classifier Server",
        description="Snake species classification with venom reference lookup",
        version=__version__,
        lifespan=lifespan
    )

    # Include routers
    app.include_router(health.router, prefix="/api/v1", tags=["health"])
    app.include_router(session.router, prefix="/api/v1", tags=["session"])
    app.include_router(classify.router, prefix="/api/v1", tags=["classify"])
    return app


app = create_app()


def run():
    """Run the server.

    Passes the app object directly to uvicorn instead of an import string.
    Using a string causes uvicorn to spawn a subprocess on Windows, which
    breaks Ctrl+C signal handling.
    """
    import argparse
    parser = argparse.ArgumentParser(description="Snake Classifier Server")
    parser.add_argument("--host", default="0.0.0.0", help="Host to bind to")
    parser.add_argument("--port", type=int, default=8765, help="Port to bind to")
    parser.add_argument("--assets-dir", help="Directory holding model, labels and reference table")
    parser.add_argument("--top-k", type=int, help="Number of candidates per prediction")
    parser.add_argument("--resize-policy", choices=["resize", "center_crop"],
                        help="How frames are fitted to the model input")
    parser.add_argument("--load-timeout", type=float, help="Asset loading deadline in seconds")
    parser.add_argument("--device", help="auto, cpu, cuda or mps")
    parser.add_argument("--log-level", default="info",
                        choices=["debug", "info", "warning", "error"])
    args = parser.parse_args()

    logging.getLogger().setLevel(args.log_level.upper())
    config = SessionConfig.from_env(
        assets_dir=args.assets_dir,
        top_k=args.top_k,
        resize_policy=args.resize_policy,
        load_timeout_s=args.load_timeout,
        device=args.device,
    )

    uvicorn.run(
        create_app(config),
        host=args.host,
        port=args.port,
        log_level=args.log_level
    )


if __name__ == "__main__":
    run()
