import os
import re
import subprocess
import sys
from pathlib import Path

import pytest


EXAMPLES_DIR = Path(__file__).resolve().parents[1] / "examples"
REPO_ROOT = EXAMPLES_DIR.parent
# Only run numbered examples (01_*.py, 02_*.py, ...).
EXAMPLE_FILES = sorted(p for p in EXAMPLES_DIR.glob("[0-9][0-9]_*.py") if p.is_file())

# lines every example must print
EXPECTED_OUTPUT = {
    "01_equality_constraint.py": ["MinimizeResult(backend='lm_feasible'", "converged: True"],
    "02_siman_trace.py": ["MinimizeResult(backend='siman', cvg=1"],
    "03_structured_params.py": ["MinimizeResult(backend='octave_sqp'"],
    "04_backend_swap.py": ["lm_feasible:", "octave_sqp:", "siman:", "d2_min:"],
}

_SUMMARY_CVG = re.compile(r"MinimizeResult\(backend='\w+', cvg=(-?\d+)")
_SUMMARY_ELEMENT = re.compile(r"^\s*p\[(\d+)\]: (\S+)$", re.MULTILINE)


def _run_example(path: Path) -> str:
    if "import matplotlib" in path.read_text(encoding="utf-8"):
        pytest.importorskip("matplotlib")

    env = os.environ.copy()
    env["MPLBACKEND"] = "Agg"
    src_path = str(REPO_ROOT / "src")
    env["PYTHONPATH"] = src_path + os.pathsep + env.get("PYTHONPATH", "")

    result = subprocess.run(
        [sys.executable, str(path)],
        cwd=str(REPO_ROOT),
        env=env,
        capture_output=True,
        text=True,
        check=False,
    )
    if result.returncode != 0:
        raise AssertionError(
            f"Example failed: {path.name}\n"
            f"stdout:\n{result.stdout}\n"
            f"stderr:\n{result.stderr}"
        )
    return result.stdout


@pytest.mark.examples
@pytest.mark.parametrize("path", EXAMPLE_FILES, ids=lambda p: p.name)
def test_example_output(path: Path) -> None:
    stdout = _run_example(path)
    for fragment in EXPECTED_OUTPUT.get(path.name, []):
        assert fragment in stdout, f"{path.name}: {fragment!r} not in output\n{stdout}"


@pytest.mark.examples
def test_equality_constraint_example_reaches_closest_point() -> None:
    stdout = _run_example(EXAMPLES_DIR / "01_equality_constraint.py")

    cvg = _SUMMARY_CVG.search(stdout)
    assert cvg is not None, stdout
    assert int(cvg.group(1)) > 0

    p = {int(i): float(v) for i, v in _SUMMARY_ELEMENT.findall(stdout)}
    assert sorted(p) == [0, 1]
    assert p[0] == pytest.approx(0.0, abs=1e-4)
    assert p[1] == pytest.approx(1.0, abs=1e-4)


@pytest.mark.examples
def test_backend_swap_example_reports_every_backend() -> None:
    stdout = _run_example(EXAMPLES_DIR / "04_backend_swap.py")
    codes = dict(re.findall(r"^\s*(\w+): .*cvg=(-?\d+)", stdout, re.MULTILINE))
    assert set(codes) == {"lm_feasible", "octave_sqp", "siman", "d2_min"}
    # no MaxIter, so siman runs its schedule to the end
    assert codes["siman"] == "1"
