from setuptools import setup
import os

def read_requirements():
    """Collects requirement specifiers from requirements.txt, ignoring comments and blank lines."""
    reqs_file = os.path.join(os.path.dirname(__file__), 'requirements.txt')
    requirements = []
    with open(reqs_file, 'r', encoding='utf-8') as f:
        for raw in f:
            line = raw.split('#', 1)[0].strip()
            if line:
                requirements.append(line)
    return requirements

# Metadata lives in pyproject.toml; install_requires is declared dynamic there
# and resolved from requirements.txt here.
setup(
    install_requires=read_requirements(),
)
