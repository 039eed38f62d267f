import threading
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from photostack.config import Settings, load_settings
from photostack.routers.alignment import router as alignment_router
from photostack.routers.fusion import router as fusion_router
from photostack.routers.metadata import router as metadata_router
from photostack.services.alignment import AlignmentSession


def create_app(settings: Optional[Settings] = None) -> FastAPI:
	settings = settings or load_settings()
	app = FastAPI(title="PhotoStack - Alignment & Exposure Fusion API", version="0.1.0")

	# CORS (adjust origins in production)
	app.add_middleware(
		CORSMiddleware,
		allow_origins=["*"],
		allow_credentials=False,
		allow_methods=["*"],
		allow_headers=["*"],
	)

	# One calibrated session per app; requests touching it are serialized
	app.state.settings = settings
	app.state.session = AlignmentSession(settings.registration, settings.output)
	app.state.session_lock = threading.Lock()

	# Routers
	app.include_router(alignment_router)
	app.include_router(fusion_router)
	app.include_router(metadata_router)

	return app


app = create_app()


if __name__ == "__main__":
	# Local dev server: uvicorn photostack.main:app --reload
	import uvicorn

	from photostack.logging_config import setup_logging

	setup_logging(app.state.settings.logging.level, app.state.settings.logging.log_dir)
	uvicorn.run("photostack.main:app", host="0.0.0.0", port=8000, reload=True)
