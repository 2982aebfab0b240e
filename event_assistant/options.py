from __future__ import annotations

from threading import Lock
from typing import Any, Dict, Optional
import json
import logging
import os
import pathlib

from .utils import sanitize_text_field

logger = logging.getLogger(__name__)

OPTION_NAME = "event_assistant_settings"


class OptionsStore:
    """JSON-file option storage holding the OpenAI API key.

    The environment key, when set, wins over the stored option.
    """

    def __init__(self, path: pathlib.Path, env_api_key: str = ""):
        self.path = path
        self.env_api_key = (env_api_key or "").strip()
        self._lock = Lock()

    def _read_all(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning("options file unreadable (%s): %s", self.path, exc)
            return {}
        return data if isinstance(data, dict) else {}

    def get_options(self) -> Dict[str, Any]:
        options = self._read_all().get(OPTION_NAME)
        return dict(options) if isinstance(options, dict) else {}

    def get_api_key(self) -> str:
        if self.env_api_key:
            return self.env_api_key
        value = self.get_options().get("openai_api_key")
        return value.strip() if isinstance(value, str) else ""

    def has_api_key(self) -> bool:
        return bool(self.get_api_key())

    @staticmethod
    def sanitize_settings(raw: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        sanitized: Dict[str, Any] = {}
        if isinstance(raw, dict) and "openai_api_key" in raw:
            sanitized["openai_api_key"] = sanitize_text_field(raw.get("openai_api_key"))
        return sanitized

    def save_settings(self, raw: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        sanitized = self.sanitize_settings(raw)
        with self._lock:
            data = self._read_all()
            data[OPTION_NAME] = {**self.get_options(), **sanitized}
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps(data, indent=2), encoding="utf-8")
            os.chmod(self.path, 0o600)
        logger.info("assistant settings saved (has_api_key=%s)", self.has_api_key())
        return sanitized
