"""Copy jobs — how one source file becomes one installed file.

Every installed file is produced by a :class:`CopyJob`: a plain byte
copy, or a render that replaces the root-path token with the marker
directory of the unit it is installed into. Jobs within one operation
target disjoint paths, so they are written concurrently.
"""

from __future__ import annotations

import logging
import shutil
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path

import yaml

from ai_squad.utils.file_scanner import SKIP_DIRS

logger = logging.getLogger(__name__)

MAX_COPY_WORKERS = 8

LANGUAGE_CONFIG_FILE = "core-config.yaml"


@dataclass
class CopyJob:
    dest: str  # POSIX path relative to the install dir
    source: Path
    render_marker: str | None = None  # Substitute the root token with this marker
    language: str | None = None  # Set language.default in a core config


class JobPlan:
    """Ordered copy jobs, first job per destination wins."""

    def __init__(self):
        self.jobs: list[CopyJob] = []
        self._dests: set[str] = set()

    def add(self, job: CopyJob) -> bool:
        if job.dest in self._dests:
            return False
        self._dests.add(job.dest)
        self.jobs.append(job)
        return True

    def __contains__(self, dest: str) -> bool:
        return dest in self._dests

    def __len__(self) -> int:
        return len(self.jobs)

    @property
    def dests(self) -> list[str]:
        return [j.dest for j in self.jobs]


def produce(job: CopyJob, root_token: str) -> bytes:
    """The exact bytes *job* writes."""
    data = job.source.read_bytes()

    if job.render_marker is not None:
        try:
            text = data.decode("utf-8")
        except UnicodeDecodeError:
            logger.debug("Copying %s verbatim (not UTF-8)", job.source)
        else:
            data = text.replace(root_token, job.render_marker).encode("utf-8")

    if job.language:
        data = _set_default_language(data, job.language)

    return data


def write_job(install_dir: Path, job: CopyJob, root_token: str) -> str:
    target = install_dir / job.dest
    target.parent.mkdir(parents=True, exist_ok=True)
    if job.render_marker is None and not job.language:
        shutil.copyfile(job.source, target)
    else:
        target.write_bytes(produce(job, root_token))
    return job.dest


def write_jobs(install_dir: Path, jobs: list[CopyJob], root_token: str) -> list[str]:
    """Write every job; returns destinations in job order. I/O errors propagate."""
    if not jobs:
        return []
    with ThreadPoolExecutor(max_workers=MAX_COPY_WORKERS) as pool:
        return list(pool.map(lambda j: write_job(install_dir, j, root_token), jobs))


def remove_tree(path: Path) -> bool:
    if not path.exists():
        return False
    shutil.rmtree(path)
    return True


def remove_legacy_sibling(install_dir: Path, rel_path: str) -> str | None:
    """Delete the ``.yml`` twin of a restored ``.yaml`` file, if any."""
    if not rel_path.endswith(".yaml"):
        return None
    legacy = rel_path[: -len(".yaml")] + ".yml"
    legacy_path = install_dir / legacy
    if legacy_path.is_file():
        legacy_path.unlink()
        logger.info("Removed legacy %s (replaced by %s)", legacy, rel_path)
        return legacy
    return None


def cleanup_legacy_yml(install_dir: Path, markers: list[str]) -> list[str]:
    """Delete every ``*.yml`` file under *markers* that now has a ``*.yaml`` sibling.

    One-way migration of the extension convention; files outside the
    marker directories belong to the user and are left alone. Returns
    removed paths relative to *install_dir*.
    """
    removed = []
    candidates = []
    for marker in markers:
        if (install_dir / marker).is_dir():
            candidates.extend((install_dir / marker).rglob("*.yml"))
    for yml in sorted(candidates):
        rel = yml.relative_to(install_dir)
        if any(part in SKIP_DIRS for part in rel.parts):
            continue
        if yml.with_suffix(".yaml").is_file():
            yml.unlink()
            removed.append(rel.as_posix())
    if removed:
        logger.info("Cleaned up %d legacy .yml file(s)", len(removed))
    return removed


def _set_default_language(data: bytes, language: str) -> bytes:
    try:
        config = yaml.safe_load(data.decode("utf-8")) or {}
    except (UnicodeDecodeError, yaml.YAMLError) as e:
        logger.warning("Could not set language in core config: %s", e)
        return data
    if not isinstance(config, dict):
        return data

    section = config.get("language")
    if not isinstance(section, dict):
        section = {}
    section["default"] = language
    config["language"] = section
    return yaml.safe_dump(config, sort_keys=False, allow_unicode=True).encode("utf-8")
