from setuptools import find_packages, setup
import os

HERE = os.path.abspath(os.path.dirname(__file__))


def load_requirements(path: str) -> list[str]:
    """Load requirements from a local file.

    Must work under PEP 517 isolated builds (wheel-from-sdist), so resolve the
    path relative to this file and fail gracefully if the file isn't present.
    """
    req_path = os.path.join(HERE, path)
    try:
        with open(req_path, "r", encoding="utf-8") as f:
            return [line.strip() for line in f if line.strip() and not line.startswith("#")]
    except FileNotFoundError:
        return []


setup(
    name='netdiag-engine',
    version='1.0.0',
    description='Network diagnostic probes behind one result envelope',
    license='GPL-3.0',
    python_requires='>=3.9',
    packages=find_packages(include=["netdiag", "netdiag.*"]),
    install_requires=load_requirements("requirements.txt"),
    extras_require={
        'test': ['pytest'],
    },
    entry_points={
        'console_scripts': [
            'netdiag=netdiag.cli:run',
        ],
    }
)
