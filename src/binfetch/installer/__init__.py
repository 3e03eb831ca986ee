"""Resolve, fetch, verify and place release executables."""

from binfetch.installer.fetcher import ArtifactFetcher
from binfetch.installer.manifest import load_catalog, parse_catalog, select_release
from binfetch.installer.placement import install
from binfetch.installer.probe import probe
from binfetch.installer.resolver import resolve
from binfetch.installer.service import InstallOutcome, InstallProgress, InstallService, InstallStage

__all__ = [
    "ArtifactFetcher",
    "InstallOutcome",
    "InstallProgress",
    "InstallService",
    "InstallStage",
    "install",
    "load_catalog",
    "parse_catalog",
    "probe",
    "resolve",
    "select_release",
]
