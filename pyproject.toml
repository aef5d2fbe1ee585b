[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "answer-service"
version = "0.1.0"
description = "Event-driven service that stores form answers, caches them in Redis and publishes answer events over AMQP"
requires-python = ">=3.10"
keywords = ["answers", "forms", "rabbitmq", "amqp", "redis", "events", "microservice"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: WWW/HTTP",
]
dependencies = [
    "pika",
    "redis",
    "sqlalchemy",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
answer-service = "answer_service.app:main"

[tool.hatch.build.targets.wheel]
packages = ["answer_service"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]
