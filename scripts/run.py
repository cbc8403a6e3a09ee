#!/usr/bin/env python3
"""Immo Harvester — Application Runner.

Performs pre-flight checks and launches the main application.

Usage:
    python scripts/run.py run [--job JOB_ID]
    python scripts/run.py reconcile
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

# Add project root to path
PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

BANNER = r"""
╔══════════════════════════════════════════════════════════╗
║                                                          ║
║              Immo Harvester v1.0                         ║
║      Real-Estate Listing Acquisition & Tracking          ║
║                                                          ║
╚══════════════════════════════════════════════════════════╝
"""

REQUIRED_FILES = [
    "config/settings.yaml",
]


def preflight_checks() -> bool:
    """Run pre-flight checks before starting the application.

    Checks:
      - .env file (optional, loaded when present)
      - Required config files exist
      - data/ and logs/ directories exist (creates them)
      - Playwright's Chromium is installed (warning only)

    Returns:
        True if all checks pass, False otherwise.
    """
    os.chdir(str(PROJECT_ROOT))
    ok = True

    env_path = PROJECT_ROOT / ".env"
    if env_path.exists():
        from dotenv import load_dotenv
        load_dotenv(env_path)
        print("✅ .env loaded")
    else:
        print("⚠️  No .env file (only needed for ${VAR} references in settings.yaml)")

    for f in REQUIRED_FILES:
        path = PROJECT_ROOT / f
        if not path.exists():
            print(f"❌ {f} not found!")
            ok = False
        else:
            print(f"✅ {f} exists")

    for d in ("data", "logs"):
        (PROJECT_ROOT / d).mkdir(exist_ok=True)
        print(f"✅ {d}/ directory ready")

    browsers = Path(os.environ.get(
        "PLAYWRIGHT_BROWSERS_PATH", Path.home() / ".cache" / "ms-playwright",
    ))
    if browsers.exists() and any(browsers.glob("chromium*")):
        print("✅ Playwright Chromium found")
    else:
        print("⚠️  Playwright Chromium not found; run 'playwright install chromium' for Immowelt")

    return ok


def main() -> None:
    """Entry point: run checks then start the application."""
    print(BANNER)

    print("═══ Pre-flight Checks ═══\n")
    if not preflight_checks():
        print("\n❌ Pre-flight checks failed! Fix the issues above and try again.")
        sys.exit(1)

    print("\n✅ All checks passed!\n")

    from immo_harvester.main import main as app_main
    sys.exit(app_main(sys.argv[1:]))


if __name__ == "__main__":
    main()
