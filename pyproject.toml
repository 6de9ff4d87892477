[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "crawlkit"
version = "0.1.0"
description = "A callback-driven web scraping and crawling framework"
requires-python = ">=3.10"
keywords = ["scraping", "crawler", "spider", "html", "xml", "xpath", "css-selectors"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: WWW/HTTP :: Indexing/Search",
    "Topic :: Software Development :: Libraries :: Python Modules",
    "Topic :: Text Processing :: Markup :: HTML",
]
dependencies = [
    "requests>=2.28",
    "beautifulsoup4>=4.11",
    "lxml>=4.9",
]

[project.optional-dependencies]
test = [
    "pytest>=7.0",
]

[project.scripts]
crawlkit = "crawlkit.scaffold:main"

[tool.hatch.build.targets.wheel]
packages = ["crawlkit"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
ignore_missing_imports = true
