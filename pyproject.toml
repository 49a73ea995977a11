[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "robotrack"
version = "0.1.0"
description = "Colour-histogram target tracking with CamShift and serial turret aiming"
requires-python = ">=3.10"
keywords = ["camshift", "tracking", "histogram", "serial", "turret", "robotics"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: Science/Research",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Scientific/Engineering :: Image Recognition",
]
dependencies = [
    "numpy",
    "scipy",
    "pyserial",
    "imageio",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
robotrack = "robotrack.app:main"

[tool.hatch.build.targets.wheel]
packages = ["robotrack"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
