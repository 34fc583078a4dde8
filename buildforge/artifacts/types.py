from dataclasses import dataclass
from pathlib import Path
from typing import Callable


@dataclass(frozen=True)
class Artifact:
    name: str
    path: str | Path
    render: Callable[[], str]


class ArtifactWriteError(Exception):
    def __init__(self, path: str | Path, cause: BaseException):
        super().__init__(f"Cannot write {path}: {cause}")
        self.path = Path(path)
        self.cause = cause


class ManifestReadError(Exception):
    def __init__(self, *args: object) -> None:
        super().__init__(*args)
