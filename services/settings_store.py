# services/settings_store.py
"""
Non-sensitive contact form options stored as a small JSON document.
Credentials never pass through here.
"""

import json
import logging
import os
import tempfile
import threading
from dataclasses import dataclass, asdict, fields
from pathlib import Path
from typing import Union

logger = logging.getLogger(__name__)

DEFAULT_FORM_TITLE = "Get in touch"
DEFAULT_SUCCESS_MESSAGE = "Thank you. Your message has been sent."


@dataclass
class ContactSettings:
    form_title: str = DEFAULT_FORM_TITLE
    success_message: str = DEFAULT_SUCCESS_MESSAGE
    credentials_saved: bool = False


class SettingsStore:
    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self._lock = threading.Lock()

    def load(self) -> ContactSettings:
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return ContactSettings()
        except ValueError as e:
            logger.warning(f"Settings file {self.path} unreadable, using defaults: {e}")
            return ContactSettings()
        if not isinstance(data, dict):
            return ContactSettings()
        known = {f.name for f in fields(ContactSettings)}
        return ContactSettings(**{k: v for k, v in data.items() if k in known})

    def save(self, settings: ContactSettings) -> None:
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=".settings-", dir=self.path.parent)
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    json.dump(asdict(settings), handle, indent=2)
                os.replace(tmp_name, self.path)
            except BaseException:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise

    def delete(self) -> None:
        with self._lock:
            if self.path.exists():
                self.path.unlink()
