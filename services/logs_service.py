import logging

from config import DEBUG

# Config logging
logger = logging.getLogger("safecast_api")
logger.setLevel(logging.DEBUG if DEBUG else logging.INFO)

# Guard against a second handler when the module is reloaded
if not logger.handlers:
    handler = logging.StreamHandler()
    formatter = logging.Formatter("%(asctime)s - %(levelname)s - %(name)s - %(message)s")

    handler.setFormatter(formatter)
    logger.addHandler(handler)
