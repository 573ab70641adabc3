"""Quick environment sanity check for the collector and its API.

Run with the active virtualenv to confirm the installed versions match
pyproject.toml (especially SQLAlchemy on Python 3.13, and pymodbus >= 3.10
which takes ``device_id`` on reads).
"""
from importlib import metadata

PACKAGES = [
    "pymodbus",
    "pydantic",
    "sqlalchemy",
    "packaging",
    "fastapi",
    "uvicorn",
]


def get_version(pkg: str) -> str:
    try:
        return metadata.version(pkg)
    except metadata.PackageNotFoundError:
        return "<not installed>"


def report(packages=PACKAGES) -> dict:
    return {pkg: get_version(pkg) for pkg in packages}


def main() -> None:
    for pkg, version in report().items():
        print(f"{pkg} = {version}")


if __name__ == "__main__":
    main()
