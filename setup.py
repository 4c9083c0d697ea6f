from setuptools import setup, find_packages
from os import environ
import re
from pathlib import Path

# Read the version without importing the package (its dependencies may not
# be installed yet in an isolated build environment).
_config = (Path(__file__).parent / "cloudprof" / "cloudprof_config.py").read_text(encoding="utf-8")
cloudprof_version = re.search(r'^cloudprof_version = "([^"]+)"', _config, re.M).group(1)


# If we're testing packaging, build using a ".devN" suffix in the version number,
# so that we can upload new files (as testpypi/pypi don't allow re-uploading files with
# the same name as previously uploaded).
# Numbering scheme: https://www.python.org/dev/peps/pep-0440
dev_build = ('.dev' + environ['DEV_BUILD']) if 'DEV_BUILD' in environ else ''

setup(
    name="cloudprof",
    version=cloudprof_version + dev_build,
    description="Continuous profiling agent that ships CPU and heap profiles to a profiling backend",
    python_requires=">=3.8",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "pydantic>=2.0",
        "requests>=2.25",
        "rich>=10.7.0",
    ],
    extras_require={
        "test": [
            "hypothesis>=6.0",
            "pytest>=7.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "cloudprof = cloudprof.__main__:main",
        ],
    },
    include_package_data=True,
)
