[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "grpc_middleware"
version = "0.1.0"
description = "Transport-agnostic gRPC-style interceptors: retry, recovery, real IP, selector, timeout, validation and reporting."
requires-python = ">=3.10"
dependencies = []
keywords = ["grpc", "middleware", "interceptors", "retry", "metadata", "backoff"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Operating System :: OS Independent",
    "Topic :: Software Development :: Libraries :: Python Modules",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["grpc_middleware"]

[tool.pytest.ini_options]
addopts = "-ra"
