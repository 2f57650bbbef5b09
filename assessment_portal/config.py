import json
import logging
import os
from typing import Optional

import firebase_admin
from firebase_admin import credentials

from assessment_portal.core.settings import settings

logger = logging.getLogger("assessment_portal.config")


def _certificate_from_settings() -> Optional[tuple]:
    """Return ``(source, certificate)`` for the first usable credential setting."""
    if settings.firebase_cert_json:
        try:
            return "FIREBASE_CERT_JSON", credentials.Certificate(json.loads(settings.firebase_cert_json))
        except (ValueError, TypeError) as e:
            logger.warning(f"Ignoring FIREBASE_CERT_JSON: {e}")

    path = settings.firebase_cert_path
    if path and os.path.exists(path):
        try:
            return path, credentials.Certificate(path)
        except (ValueError, OSError) as e:
            logger.warning(f"Ignoring Firebase key file {path}: {e}")
    return None


def init_firebase() -> Optional[str]:
    """Initialize the Firebase admin app once; returns the credential source used.

    Without credentials nothing is initialized and only the mock tokens
    (development and test environments) authenticate.
    """
    if firebase_admin._apps:
        return "existing app"

    found = _certificate_from_settings()
    if found is None:
        logger.warning(
            f"No Firebase credentials found (env={settings.environment}); "
            "bearer tokens cannot be verified"
        )
        return None

    source, cert = found
    firebase_admin.initialize_app(cert)
    logger.info(f"Firebase initialized from {source}")
    return source
