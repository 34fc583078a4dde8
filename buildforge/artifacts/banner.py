from __future__ import annotations

import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Mapping

from buildforge.config import ConfigError, read_mapping

from .types import ManifestReadError

VERSION_TOKEN = "@@version"
DATE_TOKEN = "@@date"

_TOKENS = re.compile("|".join(re.escape(t) for t in (VERSION_TOKEN, DATE_TOKEN)))


def render(template: str, version: str, date: str) -> str:
    """Substitute the first `@@version` and the first `@@date` token.

    Both tokens are replaced in a single pass, so the result does not depend
    on substitution order. A missing token is left alone.
    """
    values = {VERSION_TOKEN: version, DATE_TOKEN: date}

    def substitute(match: re.Match[str]) -> str:
        return values.pop(match.group(0), match.group(0))

    return _TOKENS.sub(substitute, template)


def utc_today() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%d")


def version_marker(version: str) -> str:
    return (
        f"export const version = '{version}'\n"
        "// Note: This file is automatically generated when building.\n"
        "// Changes made in this file will be overwritten.\n"
    )


def read_version(manifest: str | Path) -> str:
    try:
        raw = read_mapping(manifest)
    except ConfigError as exc:
        raise ManifestReadError(f"Cannot read manifest: {exc}") from exc

    version = raw.get("version")
    project = raw.get("project")
    if version is None and isinstance(project, Mapping):
        version = project.get("version")

    if not isinstance(version, str) or len(version.strip()) < 1:
        raise ManifestReadError(f"{manifest}: missing 'version' string field")

    return version.strip()


class VersionedBannerProvider:
    def __init__(
        self,
        template_path: str | Path,
        manifest_path: str | Path,
        *,
        today: Callable[[], str] = utc_today,
    ):
        self.template_path = Path(template_path)
        self.manifest_path = Path(manifest_path)
        self.today = today
        self._template: str | None = None
        self._template_mtime: float | None = None

    def template(self) -> str:
        mtime = self.template_path.stat().st_mtime
        if self._template is None or mtime != self._template_mtime:
            self._template = self.template_path.read_text(encoding="utf-8")
            self._template_mtime = mtime
        return self._template

    def current_version(self) -> str:
        return read_version(self.manifest_path)

    def banner(self) -> str:
        return render(self.template(), self.current_version(), self.today())

    def version_marker(self) -> str:
        return version_marker(self.current_version())
