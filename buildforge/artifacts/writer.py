from __future__ import annotations

from pathlib import Path

from buildforge.log import get_logger

from .types import Artifact, ArtifactWriteError

log = get_logger("buildforge.artifacts")


class ArtifactWriter:
    """Writes generated files below a root directory, always overwriting."""

    def __init__(self, root: str | Path = "."):
        self.root = Path(root)

    def resolve(self, path: str | Path) -> Path:
        p = Path(path)
        return p if p.is_absolute() else self.root / p

    def write(self, path: str | Path, content: str) -> Path:
        target = self.resolve(path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            with target.open("w", encoding="utf-8", newline="") as fh:
                fh.write(content)
                fh.flush()
        except OSError as exc:
            raise ArtifactWriteError(target, exc) from exc

        log.debug("wrote %s (%d chars)", target, len(content))
        return target

    def read(self, path: str | Path) -> str:
        target = self.resolve(path)
        try:
            return target.read_text(encoding="utf-8")
        except OSError as exc:
            raise ArtifactWriteError(target, exc) from exc

    def write_artifact(self, artifact: Artifact) -> Path:
        return self.write(artifact.path, artifact.render())
