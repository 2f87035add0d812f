#!/usr/bin/env python3
"""
Run Context: reproducibility infrastructure for factor scoring runs.

Provides:
  - run_id generation (UUID4)
  - Config snapshot saving
  - Run metadata recording (timestamps, versions, parameters)
  - Result artifact saving (JSON)
  - Structured JSON logging

Usage:
    ctx = RunContext()                     # generates run_id, creates ./runs/{run_id}/
    ctx.save_config(cfg)                   # snapshot the validated config
    ctx.save_artifact("scores", records)   # save a JSON-serialisable result
    ctx.log.info("message", extra={"ticker": "AAPL"})
    ctx.save_metadata({...})               # save final run metadata
"""

import hashlib
import importlib.metadata
import json
import logging
import platform
import subprocess
import sys
import uuid
from datetime import datetime, timezone
from pathlib import Path

import yaml

ROOT = Path(__file__).resolve().parent


class _JSONFormatter(logging.Formatter):
    """Structured JSON log formatter."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ"),
            "level": record.levelname,
            "module": record.module,
            "func": record.funcName,
            "msg": record.getMessage(),
        }
        # Merge any extra fields (ticker, factor, count, etc.)
        for key in ("ticker", "metric", "factor", "phase", "count", "run_id"):
            val = getattr(record, key, None)
            if val is not None:
                entry[key] = val
        return json.dumps(entry, default=str)


class RunContext:
    """Manages a single scoring run's metadata, artifacts, and logging."""

    def __init__(self, run_id: str | None = None, runs_dir: Path | None = None):
        self.run_id = run_id or uuid.uuid4().hex[:12]
        self.start_time = datetime.now()
        # ./runs under the working directory unless told otherwise
        self.run_dir = Path(runs_dir or Path.cwd() / "runs") / self.run_id
        self.run_dir.mkdir(parents=True, exist_ok=True)

        self.log = logging.getLogger(f"scoring.{self.run_id}")
        self.log.setLevel(logging.DEBUG)
        self.log.propagate = False

        # Remove existing handlers to avoid duplicates on re-init
        self.log.handlers.clear()

        fh = logging.FileHandler(str(self.run_dir / "run.log"), encoding="utf-8")
        fh.setFormatter(_JSONFormatter())
        self.log.addHandler(fh)

        ch = logging.StreamHandler(sys.stdout)
        ch.setFormatter(logging.Formatter(
            "%(asctime)s [%(levelname)s] %(message)s", datefmt="%H:%M:%S"))
        ch.setLevel(logging.INFO)
        self.log.addHandler(ch)

        self.log.info("Run started", extra={"run_id": self.run_id})

    def close(self):
        """Flush and detach this run's handlers."""
        for h in list(self.log.handlers):
            h.close()
            self.log.removeHandler(h)

    def save_config(self, cfg: dict) -> Path:
        """Save a snapshot of the config used for this run."""
        path = self.run_dir / "config.yaml"
        with open(path, "w") as f:
            yaml.dump(cfg, f, default_flow_style=False, sort_keys=False)
        self.log.info("Config snapshot saved", extra={"phase": "init"})
        return path

    def config_hash(self, cfg: dict) -> str:
        """Deterministic hash of the config keys that change scores or matrices."""
        relevant = {
            "factors": cfg.get("factors", {}),
            "themes": cfg.get("themes", {}),
            "returns": cfg.get("returns", {}),
            "matrix": cfg.get("matrix", {}),
        }
        raw = json.dumps(relevant, sort_keys=True, default=str)
        return hashlib.sha256(raw.encode()).hexdigest()[:12]

    def save_artifact(self, name: str, data) -> Path:
        """Save a JSON-serialisable result (list or dict) for this run."""
        path = self.run_dir / f"{name}.json"
        with open(path, "w") as f:
            json.dump(data, f, indent=2, default=str)
        count = len(data) if hasattr(data, "__len__") else None
        self.log.info(f"Artifact saved: {name}",
                      extra={"phase": "artifact", "count": count})
        return path

    def save_metadata(self, extra: dict | None = None) -> Path:
        """Save run metadata (call at end of run)."""
        end_time = datetime.now()
        meta = {
            "run_id": self.run_id,
            "start_time": self.start_time.isoformat(),
            "end_time": end_time.isoformat(),
            "elapsed_seconds": round((end_time - self.start_time).total_seconds(), 1),
            "git_sha": _get_git_sha(),
            "python_version": sys.version,
            "platform": platform.platform(),
            "packages": _get_package_versions(),
        }
        if extra:
            meta.update(extra)
        path = self.run_dir / "meta.json"
        with open(path, "w") as f:
            json.dump(meta, f, indent=2, default=str)
        self.log.info("Run metadata saved", extra={"run_id": self.run_id})
        return path


def _get_git_sha() -> str:
    """Get the current git commit SHA, or 'unknown' if not in a git repo."""
    try:
        result = subprocess.run(
            ["git", "rev-parse", "HEAD"],
            capture_output=True, text=True, timeout=5,
            cwd=str(ROOT),
        )
        if result.returncode == 0:
            return result.stdout.strip()
    except (FileNotFoundError, subprocess.TimeoutExpired):
        pass
    return "unknown"


def _get_package_versions() -> dict:
    """Get versions of key dependencies."""
    versions = {}
    for pkg in ["numpy", "pandas", "scipy", "openpyxl", "pyyaml", "pydantic"]:
        try:
            versions[pkg] = importlib.metadata.version(pkg)
        except importlib.metadata.PackageNotFoundError:
            versions[pkg] = "unknown"
    return versions
