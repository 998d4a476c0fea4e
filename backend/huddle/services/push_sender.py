"""Push delivery for user notifications over Firebase Cloud Messaging."""

import logging
from dataclasses import dataclass, field
from threading import Lock
from typing import Any, Dict, List, Optional

from huddle.config import settings

logger = logging.getLogger(__name__)

# FCM rejects multicast messages addressed to more than 500 tokens.
MULTICAST_LIMIT = 500
_STALE_TOKEN_ERRORS = ("registration token", "invalid argument", "not registered", "unregistered")


@dataclass
class PushOutcome:
    delivered: int = 0
    failed: int = 0
    stale_tokens: List[str] = field(default_factory=list)


def _is_stale_token_error(error: Any) -> bool:
    text = str(error or "").lower()
    return any(marker in text for marker in _STALE_TOKEN_ERRORS)


class PushSender:
    """Connects to Firebase on first use. Without credentials every send is a no-op."""

    def __init__(self, credentials_path: Optional[str] = None) -> None:
        self._credentials_path = credentials_path
        self._lock = Lock()
        self._messaging: Any = None
        self._ready: Optional[bool] = None

    @property
    def enabled(self) -> bool:
        return self._connect()

    def _connect(self) -> bool:
        if self._ready is not None:
            return self._ready
        with self._lock:
            if self._ready is None:
                self._messaging = self._load_messaging()
                self._ready = self._messaging is not None
        return self._ready

    def _load_messaging(self) -> Any:
        path = self._credentials_path if self._credentials_path is not None else settings.firebase_credentials_path
        path = path.strip()
        if not path:
            logger.info("Push delivery disabled: FIREBASE_CREDENTIALS_PATH not set")
            return None
        try:
            import firebase_admin
            from firebase_admin import credentials, messaging
        except ImportError:
            logger.warning("Push delivery disabled: firebase-admin is not installed (pip install huddle-api[push])")
            return None
        try:
            if not firebase_admin._apps:  # pylint: disable=protected-access
                firebase_admin.initialize_app(credentials.Certificate(path))
        except (ValueError, OSError):
            logger.exception("Push delivery disabled: Firebase rejected the credentials at %s", path)
            return None
        logger.info("Push delivery ready")
        return messaging

    def send(self, tokens: List[str], title: str, body: str, data: Dict[str, str]) -> PushOutcome:
        outcome = PushOutcome()
        if not tokens or not self._connect():
            return outcome
        for start in range(0, len(tokens), MULTICAST_LIMIT):
            chunk = tokens[start : start + MULTICAST_LIMIT]
            message = self._messaging.MulticastMessage(
                notification=self._messaging.Notification(title=title, body=body),
                data=data,
                tokens=chunk,
            )
            try:
                batch = self._messaging.send_each_for_multicast(message)
            except Exception:
                logger.exception("Push batch of %s tokens failed", len(chunk))
                outcome.failed += len(chunk)
                continue
            for token, response in zip(chunk, batch.responses):
                if response.success:
                    outcome.delivered += 1
                    continue
                outcome.failed += 1
                if _is_stale_token_error(response.exception):
                    outcome.stale_tokens.append(token)
        if outcome.stale_tokens:
            logger.info("Dropping %s stale device tokens", len(outcome.stale_tokens))
        return outcome


push_sender = PushSender()
