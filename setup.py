from __future__ import annotations

from pathlib import Path

from setuptools import find_packages, setup


def read_requirements() -> list[str]:
    requirements_file = Path("requirements.txt")
    if not requirements_file.exists():
        return []
    return [line.strip() for line in requirements_file.read_text(encoding="utf-8").splitlines() if line.strip()]


def build_extras() -> dict[str, list[str]]:
    base: dict[str, set[str]] = {
        "kurento": {
            "websockets",
        },
        "browser": {
            "playwright",
            "Pillow",
        },
        "aiortc": {
            "aiortc",
            "av",
        },
        "config": {
            "PyYAML",
        },
    }

    extras_sets = dict(base)
    extras_sets["test"] = {"pytest", "PyYAML", "websockets"}

    full = set().union(*base.values())
    extras_sets["full"] = full
    extras_sets["all"] = full

    return {name: sorted(packages) for name, packages in extras_sets.items()}


setup(
    name="kurento_testkit",
    version="0.1.0",
    packages=find_packages(exclude=("tests", "tests.*")),
    package_data={
        "kurento_testkit": ["adapters/content/static/*"],
    },
    description="Integration and stability test harness for Kurento media server clients",
    long_description=Path("README.md").read_text(encoding="utf-8"),
    long_description_content_type="text/markdown",
    install_requires=read_requirements(),
    extras_require=build_extras(),
    entry_points={
        "pytest11": ["kurento_testkit = kurento_testkit.testing.pytest_plugin"],
    },
    include_package_data=True,
)
