from dataclasses import dataclass, field
from typing import Optional, Union, Iterator

from classifier import Classification, Support
from declarationtable import DeclarationId, Declaration, Namespace, Conflict, ConflictKind, Record
from layoutengine import Layout, LayoutErrorKind
from macroevaluator import ConstantValue, MacroErrorKind
from targetplatform import TargetPlatform
from typegraph.types import Type

ErrorKind = Union[ConflictKind, MacroErrorKind, LayoutErrorKind]


@dataclass(frozen=True)
class Diagnostic:
    id: DeclarationId
    error: ErrorKind
    message: str

    def __str__(self):
        return f"{self.id}: {self.message}"


@dataclass(frozen=True)
class EntityReport:
    """Everything known about one declaration once analysis is done."""
    id: DeclarationId
    declaration: Declaration
    # typedef-free type of the entity; None for macros that are not constants
    type: Optional[Type]
    classification: Classification
    layout: Optional[Layout] = None
    constant: Optional[ConstantValue] = None
    conflicts: tuple[Conflict, ...] = ()

    @property
    def name(self) -> str:
        return self.id.name

    @property
    def support(self) -> Support:
        return self.classification.support


@dataclass
class Model:
    target: TargetPlatform
    entities: list[EntityReport] = field(default_factory=list)
    diagnostics: list[Diagnostic] = field(default_factory=list)

    def __post_init__(self):
        self._index = {report.id: report for report in self.entities}

    def entity(self, name: str, namespace: Optional[Namespace] = None) -> Optional[EntityReport]:
        if namespace is not None:
            return self._index.get(DeclarationId(namespace, name))
        for namespace in (Namespace.ORDINARY, Namespace.TAG, Namespace.MACRO):
            report = self._index.get(DeclarationId(namespace, name))
            if report is not None:
                return report
        return None

    def record(self, name: str) -> Optional[EntityReport]:
        report = self._index.get(DeclarationId(Namespace.TAG, name))
        if report is None or not isinstance(report.declaration, Record):
            return None
        return report

    def constant(self, name: str) -> Optional[ConstantValue]:
        report = self._index.get(DeclarationId(Namespace.MACRO, name))
        return report.constant if report is not None else None

    def diagnostics_for(self, name: str) -> list[Diagnostic]:
        return [diagnostic for diagnostic in self.diagnostics if diagnostic.id.name == name]

    def supported(self) -> Iterator[EntityReport]:
        return (report for report in self.entities if report.classification.is_supported)

    def unsupported(self) -> Iterator[EntityReport]:
        return (report for report in self.entities if not report.classification.is_supported)

    def __iter__(self) -> Iterator[EntityReport]:
        return iter(self.entities)

    def __len__(self) -> int:
        return len(self.entities)
