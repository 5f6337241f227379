#!/usr/bin/env python3
"""Bootstrap a local wecom-relay checkout.

Usage:
    python install.py          # runtime dependencies only
    python install.py --dev    # editable install with the test extra
"""

import shutil
import subprocess
import sys
from pathlib import Path

MIN_PYTHON = (3, 11)
ROOT = Path(__file__).resolve().parent
VENV = ROOT / ".venv"
TEMPLATES = {"config.example.yaml": "config.yaml", ".env.example": ".env"}


def _venv_bin(name: str) -> Path:
    scripts = "Scripts" if sys.platform == "win32" else "bin"
    return VENV / scripts / name


def _ensure_venv() -> Path:
    if VENV.is_dir():
        print(f"Reusing {VENV}")
    else:
        print(f"Creating {VENV}")
        subprocess.check_call([sys.executable, "-m", "venv", str(VENV)])
    return _venv_bin("pip")


def _install(pip: Path, dev: bool) -> None:
    subprocess.check_call([str(pip), "install", "--upgrade", "pip"])
    target = ["-e", ".[test]"] if dev else ["."]
    print("Installing wecom-relay" + (" (editable, with test extra)" if dev else ""))
    subprocess.check_call([str(pip), "install", *target], cwd=ROOT)


def _copy_templates() -> None:
    (ROOT / "data").mkdir(exist_ok=True)
    for template, target in TEMPLATES.items():
        src, dst = ROOT / template, ROOT / target
        if dst.exists():
            print(f"Keeping existing {target}")
        elif src.exists():
            shutil.copy(src, dst)
            print(f"Wrote {target} (from {template})")


def main() -> None:
    if sys.version_info < MIN_PYTHON:
        sys.exit("wecom-relay needs Python %d.%d or newer" % MIN_PYTHON)

    pip = _ensure_venv()
    _install(pip, dev="--dev" in sys.argv)
    _copy_templates()

    activate = r".venv\Scripts\activate" if sys.platform == "win32" else "source .venv/bin/activate"
    print(
        f"""
Done. Before the first start:
  - list providers and assistants in config.yaml
  - fill in .env: WECOM_CORP_ID, WECOM_ADMIN_ACCOUNT, each assistant's
    token/key/secret, the accountant token/key, provider endpoints and keys
  - {activate}
  - wecom-relay config-check
  - wecom-relay start   (point WeCom callbacks at http://<host>:<port>/agent/<agent_id>)
"""
    )


if __name__ == "__main__":
    main()
