"""
Image Resize Server entry point.

    cd backend
    python main.py
"""

import logging

import uvicorn

from image_resize import ResizeServerConfig, create_app

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

config = ResizeServerConfig.from_env()
app = create_app(config)


if __name__ == "__main__":
    uvicorn.run(app, host=config.host, port=config.port)
