#!/usr/bin/env python3
"""SongSmith — Environment Setup Checker

Validates that the required packages, credentials and configuration are in
place before starting the SongSmith API for the first time.

Usage:
    python scripts/setup_check.py            # full check
    python scripts/setup_check.py --quick    # essential packages and keys only
"""
from __future__ import annotations

import argparse
import importlib
import json
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Tuple

try:
    import yaml
except ImportError:
    print("ERROR: PyYAML not installed.  Run: pip install pyyaml")
    sys.exit(1)

# ── Paths ─────────────────────────────────────────────────────────────────────
REPO_ROOT = Path(__file__).parent.parent
CONFIG_DIR = REPO_ROOT / "backend" / "config"
SETTINGS_YAML = CONFIG_DIR / "settings.yaml"

# ── ANSI colours ──────────────────────────────────────────────────────────────
GREEN  = "\033[92m"
YELLOW = "\033[93m"
RED    = "\033[91m"
BLUE   = "\033[94m"
RESET  = "\033[0m"
BOLD   = "\033[1m"


def ok(msg: str) -> str:
    return f"  {GREEN}✓{RESET}  {msg}"


def warn(msg: str) -> str:
    return f"  {YELLOW}⚠{RESET}  {msg}"


def err(msg: str) -> str:
    return f"  {RED}✗{RESET}  {msg}"


def section(title: str) -> None:
    print(f"\n{BOLD}{BLUE}━━ {title} ━━{RESET}")


# ── Result accumulator ────────────────────────────────────────────────────────
@dataclass
class CheckResult:
    passed: int = 0
    warned: int = 0
    failed: int = 0
    messages: List[Tuple[str, str]] = field(default_factory=list)

    def add(self, level: str, msg: str) -> None:
        self.messages.append((level, msg))
        if level == "ok":
            self.passed += 1
        elif level == "warn":
            self.warned += 1
        else:
            self.failed += 1

    def report(self, level: str, msg: str, summary: str = "") -> None:
        printer = {"ok": ok, "warn": warn}.get(level, err)
        print(printer(msg))
        self.add(level, summary or msg)

    def print_summary(self) -> None:
        section("Summary")
        for level, msg in self.messages:
            printer = {"ok": ok, "warn": warn}.get(level, err)
            print(printer(msg))

        print()
        total = self.passed + self.warned + self.failed
        print(f"  {GREEN}{self.passed}{RESET} passed  "
              f"{YELLOW}{self.warned}{RESET} warnings  "
              f"{RED}{self.failed}{RESET} failed  "
              f"({total} checks)")

    @property
    def exit_code(self) -> int:
        return 0 if self.failed == 0 else 1


def load_settings() -> dict:
    if not SETTINGS_YAML.exists():
        return {}
    with open(SETTINGS_YAML) as f:
        return yaml.safe_load(f) or {}


# ── Individual checks ─────────────────────────────────────────────────────────


def check_python_version(result: CheckResult) -> None:
    section("Python")
    major, minor = sys.version_info[:2]
    ver = f"{major}.{minor}"
    if (major, minor) >= (3, 10):
        result.report("ok", f"Python {ver}")
    else:
        result.report("fail", f"Python {ver} — need 3.10+")


def check_python_packages(result: CheckResult, quick: bool) -> None:
    section("Python packages")

    # (import name, distribution name)
    required = [
        ("fastapi", "fastapi"),
        ("uvicorn", "uvicorn"),
        ("pydantic", "pydantic"),
        ("yaml", "pyyaml"),
        ("dotenv", "python-dotenv"),
        ("httpx", "httpx"),
        ("tenacity", "tenacity"),
        ("google.genai", "google-genai"),
        ("requests", "requests"),
        ("pytest", "pytest"),
    ]
    if quick:
        required = required[:3] + [("google.genai", "google-genai")]
        result.report("warn", "Quick mode — checking essential packages only",
                      "Package check in quick mode")

    for module, dist in required:
        try:
            importlib.import_module(module)
            result.report("ok", dist, f"Package: {dist}")
        except ImportError:
            result.report("fail", f"{dist} not installed  (pip install {dist})",
                          f"Package missing: {dist}")


def check_api_keys(result: CheckResult, settings: dict) -> None:
    section("API keys")

    providers = settings.get("providers", {})
    gemini_var = providers.get("gemini", {}).get("api_key_env", "API_KEY")
    suno_var = providers.get("suno", {}).get("api_key_env", "SUNO_API_KEY")

    keys = {
        gemini_var: ("Google Gemini (lyrics, cover art, video)", True),
        suno_var:   ("Suno (music); a placeholder track is used when unset", False),
    }
    for var, (desc, required) in keys.items():
        val = os.environ.get(var, "")
        if val:
            masked = val[:4] + "..." + val[-4:] if len(val) > 8 else "****"
            result.report("ok", f"{var}: {masked}  ({desc})", f"{var} set")
        elif required:
            result.report("fail", f"{var}: not set — {desc}", f"{var} missing (required)")
        else:
            print(f"  {RESET}○  {var}: not set (optional) — {desc}")
            result.add("ok", f"{var} not set (optional)")


def check_suno_endpoint(result: CheckResult, settings: dict) -> None:
    section("Suno endpoint")
    suno = settings.get("providers", {}).get("suno", {})
    url = os.environ.get(suno.get("base_url_env", "SUNO_API_URL")) or suno.get("base_url")
    if not url:
        result.report("warn", "No Suno base URL configured", "Suno base URL missing")
    elif not url.startswith(("http://", "https://")):
        result.report("fail", f"Suno base URL is not an http(s) URL: {url}", "Suno base URL invalid")
    else:
        result.report("ok", f"Suno base URL: {url}", "Suno base URL set")


def check_song_library(result: CheckResult, settings: dict) -> None:
    section("Song library")

    db_path = Path(settings.get("storage", {}).get("db_path", "backend/data/db.json"))
    if not db_path.is_absolute():
        db_path = REPO_ROOT / db_path

    if not db_path.parent.exists():
        db_path.parent.mkdir(parents=True, exist_ok=True)
        print(ok(f"data dir: created {db_path.parent}"))
        result.add("ok", "Data dir created")

    if not db_path.exists():
        result.report("ok", f"{db_path.name}: not found (a new library will be created)",
                      "Library file absent (fresh start)")
        return

    try:
        with open(db_path, encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError) as exc:
        result.report("fail", f"{db_path}: unreadable — {exc}", "Library file corrupt")
        return

    if not isinstance(data, dict):
        result.report("fail", f"{db_path}: top level is not an object", "Library file corrupt")
        return
    result.report("ok", f"Library loaded: {len(data)} song(s)", f"Library: {len(data)} songs")


def check_config_files(result: CheckResult) -> None:
    section("Configuration files")

    configs = {
        "settings.yaml": SETTINGS_YAML,
        ".env":          REPO_ROOT / ".env",
    }
    for name, path in configs.items():
        if path.exists():
            result.report("ok", name, f"Config: {name}")
        elif name == ".env":
            print(f"  {RESET}○  .env: not found (environment variables used directly)")
            result.add("ok", ".env not present (optional)")
        else:
            result.report("warn", f"{name}: not found at {path}", f"Config missing: {name}")


# ── Main ──────────────────────────────────────────────────────────────────────


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="SongSmith environment setup checker"
    )
    parser.add_argument("--quick", action="store_true", help="Skip non-essential checks")
    return parser.parse_args()


def main() -> int:
    args = parse_args()
    result = CheckResult()

    print(f"\n{BOLD}SongSmith — Setup Checker{RESET}")
    print(f"Repo root: {REPO_ROOT}")

    try:
        from dotenv import load_dotenv
        load_dotenv(REPO_ROOT / ".env", override=False)
    except ImportError:
        print(warn("python-dotenv not installed — .env will not be read"))

    settings = load_settings()

    check_python_version(result)
    check_python_packages(result, quick=args.quick)
    check_api_keys(result, settings)
    if not args.quick:
        check_suno_endpoint(result, settings)
        check_song_library(result, settings)
        check_config_files(result)

    result.print_summary()
    print()

    if result.failed == 0 and result.warned == 0:
        print(f"{GREEN}{BOLD}✓ All checks passed — SongSmith is ready!{RESET}\n")
    elif result.failed == 0:
        print(f"{YELLOW}{BOLD}⚠ Setup complete with warnings — SongSmith will run "
              f"but some features may be limited.{RESET}\n")
    else:
        print(f"{RED}{BOLD}✗ {result.failed} check(s) failed — resolve errors before "
              f"starting SongSmith.{RESET}\n")

    return result.exit_code


if __name__ == "__main__":
    sys.exit(main())
