"""
Request-scoped scratch files.

Every request gets its own directory under the shared scratch root, named with
a unique token. Everything written there is removed when the request's
``with`` block exits, whatever the outcome.
"""
import os
import time
import uuid
import shutil
import logging
from contextlib import contextmanager

from services.errors import ScratchFileError

logger = logging.getLogger(__name__)


def new_token() -> str:
    """Millisecond timestamp plus a random suffix."""
    return f"{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}"


class ScratchSession:
    """Files owned by a single request."""

    def __init__(self, directory: str, token: str):
        self.directory = directory
        self.token = token
        self.files = []

    def path_for(self, stem: str, ext: str) -> str:
        return os.path.join(self.directory, f"{stem}_{self.token}{ext}")

    def write(self, stem: str, data: bytes, ext: str = '.mp3') -> str:
        """Write ``data`` to a new scratch file and return its path."""
        path = self.path_for(stem, ext)
        self.track(path)
        try:
            with open(path, 'wb') as f:
                f.write(data)
        except OSError as e:
            raise ScratchFileError(f"Could not write scratch file: {e}") from e
        logger.info(f"[{self.token}] Wrote {len(data)} bytes to {os.path.basename(path)}")
        return path

    def track(self, path: str):
        """Register a file (possibly not created yet) for deletion."""
        if path not in self.files:
            self.files.append(path)

    def cleanup(self):
        """Delete tracked files and the session directory. Never raises."""
        for path in self.files:
            try:
                os.remove(path)
            except FileNotFoundError:
                pass
            except OSError as e:
                logger.warning(f"[{self.token}] Could not delete {path}: {e}")

        shutil.rmtree(self.directory, ignore_errors=True)
        if os.path.exists(self.directory):
            logger.warning(f"[{self.token}] Scratch directory left behind: {self.directory}")


class ScratchSpace:
    """Hands out a fresh, uniquely named scratch directory per request."""

    def __init__(self, root: str):
        self.root = root

    @contextmanager
    def session(self, prefix: str = 'job'):
        token = new_token()
        directory = os.path.join(self.root, f"{prefix}_{token}")
        try:
            os.makedirs(directory)
        except OSError as e:
            raise ScratchFileError(f"Could not create scratch directory: {e}") from e

        scratch = ScratchSession(directory, token)
        try:
            yield scratch
        finally:
            scratch.cleanup()
