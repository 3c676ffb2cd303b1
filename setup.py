import os
import re
from setuptools import setup, find_packages

root_dir = os.path.dirname(os.path.abspath(__file__))

# Read the version without importing the package (its dependencies may not be
# installed yet)
with open(os.path.join(root_dir, "cqltc", "__init__.py")) as f:
    __version__ = re.search(r'__version__\s*=\s*"([^"]+)"', f.read()).group(1)

req_file = os.path.join(root_dir, "requirements.txt")
with open(req_file) as f:
    requirements = [x for x in f.read().splitlines() if x.strip()]

setup(
    name="CQL-TestCases",
    version=__version__,
    description=f"CQL test case generation and reporting tools {__version__}",
    packages=find_packages(exclude=["tests", "tests.*"]),
    include_package_data=True,
    package_data={"cqltc": ["templates/*.j2"]},
    install_requires=requirements,
    extras_require={
        "test": ["pytest"]
    },
    python_requires=">=3.9",
    entry_points={
        'console_scripts': [
            'buildcases = cqltc.compiler:exec',
            'summarizecases = cqltc.summary:exec',
            'deployvs = cqltc.valuesets:exec'
        ]
    }
)
