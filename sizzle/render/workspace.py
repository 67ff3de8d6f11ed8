"""Request-scoped temporary storage for one render."""

import logging
import shutil
import tempfile
from pathlib import Path

from sizzle.config import get_settings

logger = logging.getLogger(__name__)


class RenderWorkspace:
    """
    Temporary directory owned by a single render request.

    Each stage gets its own sub-directory. Every path handed out is recorded,
    and ``cleanup()`` removes the whole tree. Cleanup is idempotent and never
    raises, so it is safe in ``finally`` blocks and context-manager exits.
    """

    def __init__(self, request_id: str, base_dir: str | None = None):
        self.request_id = request_id
        base = base_dir if base_dir is not None else (get_settings().render_temp_dir or None)
        self.root = Path(tempfile.mkdtemp(prefix=f"sizzle_{request_id}_", dir=base))
        self._files: list[Path] = []
        self._closed = False
        logger.debug(f"[WORKSPACE] Created {self.root}")

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def files(self) -> list[Path]:
        return list(self._files)

    def stage_dir(self, stage: str) -> Path:
        if self._closed:
            raise RuntimeError(f"Workspace {self.root} is already cleaned up")
        path = self.root / stage
        path.mkdir(parents=True, exist_ok=True)
        return path

    def path(self, stage: str, filename: str) -> Path:
        """Reserve a file path inside a stage directory."""
        path = self.stage_dir(stage) / filename
        self._files.append(path)
        return path

    def cleanup(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            shutil.rmtree(self.root)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"[WORKSPACE] Failed to remove {self.root}: {e}")
        else:
            logger.debug(f"[WORKSPACE] Removed {self.root} ({len(self._files)} tracked files)")

    def __enter__(self) -> "RenderWorkspace":
        return self

    def __exit__(self, *exc_info) -> None:
        self.cleanup()

    async def __aenter__(self) -> "RenderWorkspace":
        return self

    async def __aexit__(self, *exc_info) -> None:
        self.cleanup()
