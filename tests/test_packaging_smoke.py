from __future__ import annotations

from pathlib import Path
import importlib.util
import os
import subprocess
import shutil
import sys
import tempfile
import unittest


REPO_ROOT = Path(__file__).resolve().parents[1]
ENTRY_POINT_SCRIPT = (
    "from importlib import metadata\n"
    "scripts = metadata.entry_points(group='console_scripts')\n"
    "print([ep.value for ep in scripts if ep.name == 'smconvert'])\n"
    "print(metadata.version('classic-storymap-conversion'))\n"
)


def _install_command() -> list[str] | None:
    if importlib.util.find_spec("pip") is not None:
        return [sys.executable, "-m", "pip", "install", "-e", str(REPO_ROOT), "--no-deps"]
    uv_bin = shutil.which("uv")
    if uv_bin is None:
        return None
    return [uv_bin, "pip", "install", "--python", sys.executable, "-e", str(REPO_ROOT), "--no-deps"]


class PackagingSmokeTest(unittest.TestCase):
    @classmethod
    def setUpClass(cls) -> None:
        cls.env = os.environ.copy()
        cls.env.pop("PYTHONPATH", None)
        install_cmd = _install_command()
        if install_cmd is None:
            raise unittest.SkipTest("Neither pip nor uv is available in this Python environment")
        subprocess.run(install_cmd, cwd=REPO_ROOT, env=cls.env, capture_output=True, text=True, check=True)

    def _run(self, *args: str) -> str:
        with tempfile.TemporaryDirectory() as tmp_dir:
            proc = subprocess.run(
                [sys.executable, *args],
                cwd=tmp_dir,
                env=self.env,
                capture_output=True,
                text=True,
                check=True,
            )
        return proc.stdout.strip()

    def test_smconvert_console_script_is_registered(self) -> None:
        lines = self._run("-c", ENTRY_POINT_SCRIPT).splitlines()
        self.assertEqual(lines[0], "['storymap_conversion.cli:main']")
        self.assertEqual(lines[1], "0.1.0")

    def test_installed_cli_detects_a_template_from_clean_cwd(self) -> None:
        tour = REPO_ROOT / "examples" / "classic" / "tour.json"
        output = self._run("-m", "storymap_conversion.cli", "detect", str(tour))
        self.assertEqual(output, "Map Tour")


if __name__ == "__main__":
    unittest.main()
