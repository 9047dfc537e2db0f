#!/usr/bin/env python3
"""Set up a local think-tank environment.

Usage:
    python install.py          # Runtime install
    python install.py --dev    # Also installs pytest and pytest-asyncio
"""

import os
import platform
import shutil
import subprocess
import sys

MIN_PYTHON = (3, 11)
CONFIG_TEMPLATES = [("config.example.yaml", "config.yaml"), (".env.example", ".env")]


def main() -> None:
    if sys.version_info < MIN_PYTHON:
        sys.exit(
            f"Error: think-tank needs Python {MIN_PYTHON[0]}.{MIN_PYTHON[1]} or newer "
            f"(found {sys.version_info.major}.{sys.version_info.minor})."
        )

    dev = "--dev" in sys.argv
    project_dir = os.path.dirname(os.path.abspath(__file__))
    venv_dir = os.path.join(project_dir, ".venv")
    is_windows = platform.system() == "Windows"
    pip = os.path.join(venv_dir, "Scripts" if is_windows else "bin", "pip")

    if os.path.isdir(venv_dir):
        print("Reusing .venv")
    else:
        print("Creating .venv ...")
        subprocess.check_call([sys.executable, "-m", "venv", venv_dir])

    subprocess.check_call([pip, "install", "--upgrade", "pip"])
    target = ".[dev]" if dev else "."
    print(f"Installing think-tank ({target}) ...")
    subprocess.check_call([pip, "install", "-e", target], cwd=project_dir)

    os.makedirs(os.path.join(project_dir, "data"), exist_ok=True)

    for template, target_name in CONFIG_TEMPLATES:
        template_path = os.path.join(project_dir, template)
        target_path = os.path.join(project_dir, target_name)
        if os.path.exists(target_path):
            print(f"{target_name} exists, left untouched.")
        elif os.path.exists(template_path):
            shutil.copy(template_path, target_path)
            print(f"Wrote {target_name} from {template}")

    activate = r".\.venv\Scripts\activate" if is_windows else "source .venv/bin/activate"
    print()
    print("Done. Next:")
    print("  1. Put provider keys in .env (OPENAI_API_KEY, ANTHROPIC_API_KEY, GEMINI_API_KEY)")
    print("  2. Define personas in config.yaml")
    print(f"  3. {activate}")
    print("  4. think-tank config-check")
    print('  5. think-tank chat --persona alice "Summarize the plan"')


if __name__ == "__main__":
    main()
