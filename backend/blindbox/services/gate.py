import hmac
import logging

import requests

from blindbox.sync.transport import config_value

logger = logging.getLogger(__name__)


def verify_teacher_password(config, password: str, session=None) -> bool:
    """Check the teacher console password.

    Network transports ask the backend, which holds the bcrypt hash. The
    same-device transport has no backend and checks against the configured
    password locally. An unreachable backend counts as a refusal.
    """
    if not password:
        return False
    variant = str(config_value(config, 'TRANSPORT', 'socketio')).lower()
    if variant == 'local':
        expected = config_value(config, 'TEACHER_PASSWORD')
        if not expected:
            return False
        return hmac.compare_digest(str(expected).encode('utf-8'), password.encode('utf-8'))

    url = f"{str(config_value(config, 'BACKEND_URL', '')).rstrip('/')}/api/teacher/verify"
    http = session or requests
    try:
        res = http.post(url, json={'password': password},
                        timeout=float(config_value(config, 'REQUEST_TIMEOUT_SEC', 5)))
    except requests.RequestException as exc:
        logger.warning(f"[teacher-verify] backend unreachable: {exc}")
        return False
    return res.status_code == 200
