"""
Build collaborator — turns a function entry point into a deployable artifact.

Bundling itself is not stackrecon's job. Constructs only need the
artifact's location and the handler string to embed in the resource
definition, and they never look inside the artifact.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import PurePosixPath

from pydantic import BaseModel


class BuildArtifact(BaseModel):
    """A packaged function.

    Attributes:
        zip_path: Where the bundle is (or will be) written.
        handler:  Handler string relative to the bundle root.
    """

    zip_path: str
    handler: str


class Builder(ABC):
    """Produces a BuildArtifact for a function entry point."""

    @abstractmethod
    def build(
        self,
        entry: str,
        src_path: str,
        handler: str,
        bundle: bool,
        build_dir: str,
    ) -> BuildArtifact:
        """Package ``entry`` and return where the result lives."""


class PassthroughBuilder(Builder):
    """Computes artifact locations without building anything.

    ``src/api/get.js`` with handler ``main`` becomes
    ``<build_dir>/src-api-get.zip`` with handler ``get.main``. The names
    are a pure function of the inputs so synthesis stays deterministic.
    """

    def build(
        self,
        entry: str,
        src_path: str,
        handler: str,
        bundle: bool,
        build_dir: str,
    ) -> BuildArtifact:
        path = PurePosixPath(src_path) / entry
        stem = path.with_suffix("")
        slug = "-".join(p for p in stem.parts if p not in (".", "..", "/"))
        return BuildArtifact(
            zip_path=str(PurePosixPath(build_dir) / f"{slug}.zip"),
            handler=f"{stem.name}.{handler}",
        )
