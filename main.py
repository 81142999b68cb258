import logging

from media_transfer.core.config import settings
from media_transfer.server import TransferServer

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

# Create the upload server; the app is exposed for ASGI runners too
server = TransferServer.from_settings(settings)
app = server.app

if __name__ == "__main__":
    server.run()
