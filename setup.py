from __future__ import annotations

import logging
import os
import sys
from os.path import join as pjoin
from pathlib import Path

from setuptools import Command, setup

ROOT = Path(__file__).resolve().parent
PYPROJECT = ROOT / "pyproject.toml"
MIN_PYTHON = (3, 10)
LIVE_TEST_ENV_VAR = "TAGPERF_RUN_LIVE_TESTS"


def _warn_if_below_min_python() -> None:
    if sys.version_info < MIN_PYTHON:
        logging.warning(
            "tagperf targets Python %d.%d+ (running %d.%d); "
            "some workflows may not match release runtime behavior.",
            MIN_PYTHON[0],
            MIN_PYTHON[1],
            sys.version_info.major,
            sys.version_info.minor,
        )


def _project_version() -> str:
    try:
        import tomllib

        with PYPROJECT.open("rb") as fh:
            data = tomllib.load(fh)
        return data["project"]["version"]
    except Exception:
        # Fallback for unusual local states where pyproject parsing fails.
        sys.path.insert(0, str(ROOT / "src"))
        from tagperf import VERSION

        return VERSION


_warn_if_below_min_python()


class TestCommand(Command):
    description = "Run unit tests with pytest"
    user_options = [("verbose", "v", "produce verbose output"), ("testmodule=", "t", "test module path")]
    boolean_options = ["verbose"]

    def initialize_options(self):
        self.verbose = 0
        self.testmodule = None
        self.live = False

    def finalize_options(self):
        pass

    def run(self):
        import pytest

        if self.live:
            os.environ[LIVE_TEST_ENV_VAR] = "1"
        args = [self.testmodule or "tests"]
        if self.verbose:
            args.append("-v")
        raise SystemExit(pytest.main(args))


class LiveTestCommand(TestCommand):
    description = "Run unit tests plus the live PostgreSQL/MongoDB tests"

    def initialize_options(self):
        TestCommand.initialize_options(self)
        self.live = True


class PrintVersion(Command):
    user_options = []

    def initialize_options(self):
        self.version = None

    def finalize_options(self):
        self.version = _project_version()

    def run(self):
        print(self.version)


class CleanCommand(Command):
    """
    Remove all build files and all compiled files
    =============================================

    Remove everything from build, including that
    directory, and all .pyc files
    """

    user_options = [("verbose", "v", "produce verbose output")]

    def initialize_options(self):
        self._files_to_delete = []
        self._dirs_to_delete = []

        for root, dirs, files in os.walk("."):
            for f in files:
                if f.endswith(".pyc"):
                    self._files_to_delete.append(pjoin(root, f))
        for target in ("build", "dist", pjoin("src", "tagperf.egg-info")):
            for root, dirs, files in os.walk(pjoin(target)):
                for f in files:
                    self._files_to_delete.append(pjoin(root, f))
                for d in dirs:
                    self._dirs_to_delete.append(pjoin(root, d))
            self._dirs_to_delete.append(target)
        # reverse dir list to remove children before parents
        self._dirs_to_delete = list(reversed(self._dirs_to_delete))

        self.verbose = 0

    def finalize_options(self):
        pass

    def run(self):
        for clean_me in self._files_to_delete:
            if self.dry_run:
                logging.info("Would have unlinked %s", clean_me)
            else:
                try:
                    self.announce("Deleting " + clean_me, level=2)
                    os.unlink(clean_me)
                except OSError:
                    logging.warning("Failed to delete file %s", clean_me)
        for clean_me in self._dirs_to_delete:
            if self.dry_run:
                logging.info("Would have rmdir'ed %s", clean_me)
            else:
                if os.path.exists(clean_me):
                    try:
                        self.announce("Going to remove " + clean_me, level=2)
                        os.rmdir(clean_me)
                    except OSError:
                        logging.warning("Failed to delete dir %s", clean_me)
                elif clean_me != "build":
                    logging.warning("%s does not exist", clean_me)


setup(
    cmdclass={
        "clean": CleanCommand,
        "test": TestCommand,
        "livetest": LiveTestCommand,
        "version": PrintVersion,
    },
)
