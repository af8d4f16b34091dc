"""Persistence of the 3CX browser session (Playwright storage state)."""

import json
import logging
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

# Cookies expiring sooner than this are not worth saving
MIN_REMAINING_LIFETIME = 24 * 60 * 60


def _expires(cookie: Dict[str, Any]) -> Optional[float]:
    """Expiry in epoch seconds; None for a cookie without one."""
    value = cookie.get("expires")
    if not value:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _valid_after(cookies: List[Dict[str, Any]], cutoff: float) -> List[Dict[str, Any]]:
    # Playwright marks browser-session cookies with -1; they never outlive the browser
    valid = []
    for cookie in cookies:
        if not isinstance(cookie, dict):
            continue
        expires = _expires(cookie)
        if expires is None or expires > cutoff:
            valid.append(cookie)
    return valid


class CookieStore:
    """
    Loads and saves the browser storage state as JSON.

    The file holds Playwright's storage state: the cookie list plus the
    per-origin localStorage, where the web client keeps its auth token.
    """

    def __init__(self, path: str):
        self.path = Path(path)

    def exists(self) -> bool:
        return self.path.exists()

    def load(self, now: Optional[float] = None) -> Optional[Dict[str, Any]]:
        """
        Load the stored session, dropping expired cookies.

        A corrupted file is moved aside so the next login can write a fresh one.

        Returns:
            Storage state for ``new_context(storage_state=...)``, or None when
            nothing usable is stored.
        """
        if not self.path.exists():
            return None

        now = time.time() if now is None else now
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            logger.error(f"{self.path} is not valid JSON: {e}")
            self.backup("corrupted")
            return None
        except OSError as e:
            logger.error(f"Error reading {self.path}: {e}")
            return None

        # Older files hold a bare cookie list
        if isinstance(data, list):
            data = {"cookies": data, "origins": []}
        if not isinstance(data, dict) or not isinstance(data.get("cookies", []), list):
            logger.error(f"{self.path} does not contain a browser session")
            return None

        cookies = data.get("cookies", [])
        origins = data.get("origins") or []
        valid = _valid_after(cookies, now)
        if len(valid) < len(cookies):
            logger.warning(f"Filtered out {len(cookies) - len(valid)} expired cookies")

        if not valid and not origins:
            logger.warning(f"No valid session found in {self.path}")
            return None

        logger.info(f"Loaded {len(valid)} cookies and {len(origins)} origins from {self.path}")
        return {"cookies": valid, "origins": origins}

    def save(self, storage_state: Dict[str, Any], now: Optional[float] = None) -> bool:
        """
        Save the session, keeping only cookies that will still be valid in 24 hours.

        Returns:
            bool: Whether a file was written.
        """
        now = time.time() if now is None else now
        cookies = _valid_after(storage_state.get("cookies") or [], now + MIN_REMAINING_LIFETIME)
        origins = storage_state.get("origins") or []

        if not cookies and not origins:
            logger.warning("No long-lived cookies or local storage found to save")
            return False

        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump({"cookies": cookies, "origins": origins}, f, indent=2)
        logger.info(f"Session saved to {self.path} ({len(cookies)} cookies, {len(origins)} origins)")
        return True

    def backup(self, label: str = "backup") -> Optional[Path]:
        """Rename the session file out of the way; returns the backup path."""
        if not self.path.exists():
            return None
        backup_path = self.path.with_name(f"{self.path.stem}.{label}.{int(time.time() * 1000)}{self.path.suffix}")
        try:
            self.path.rename(backup_path)
            logger.info(f"Backed up cookies file to {backup_path}")
            return backup_path
        except OSError as e:
            logger.error(f"Error backing up cookies file: {e}")
            try:
                self.path.unlink()
                logger.info("Deleted cookies file")
            except OSError as delete_error:
                logger.error(f"Error deleting cookies file: {delete_error}")
            return None
