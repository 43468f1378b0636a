import logging
from typing import Iterable, Optional

from anonymousnamer import AnonymousTypeNamer
from classifier import Classifier, Support
from declarationtable import DeclarationTable, Declaration, ConflictKind, Entity, Record, Enum, Typedef, Function, \
    Variable, Macro
from layoutengine import LayoutEngine, LayoutError
from macroevaluator import MacroEvaluator, MacroError, MacroErrorKind
from session.model import Diagnostic, EntityReport, Model
from targetplatform import TargetPlatform
from typegraph.types import Type, RecordRef, EnumRef

logger = logging.getLogger(__name__)


class Session:
    """One run over one translation unit.

    Declarations are merged with :meth:`ingest`, anonymous types are named by
    :meth:`freeze`, and :meth:`analyze` lays out records, evaluates macros and
    classifies everything. Nothing is shared between sessions.
    """

    def __init__(self, target: Optional[TargetPlatform] = None):
        self.target = target if target is not None else TargetPlatform.linux_x86_64()
        self.table = DeclarationTable(self.target)
        self.namer = AnonymousTypeNamer(self.table)
        self.layouts: Optional[LayoutEngine] = None
        self.macros: Optional[MacroEvaluator] = None
        self.classifier: Optional[Classifier] = None

    def ingest(self, declarations: Iterable[Declaration]) -> list[ConflictKind]:
        """Merges declarations in order; returns the conflicts they caused."""
        conflicts: list[ConflictKind] = []
        count = 0
        for declaration in declarations:
            count += 1
            conflict = self.table.merge(declaration)
            if conflict is not None:
                conflicts.append(conflict)
        logger.debug("Ingested %d declarations with %d conflicts", count, len(conflicts))
        return conflicts

    def freeze(self):
        if self.table.frozen:
            return
        self.namer.run()
        self.table.freeze()
        self.layouts = LayoutEngine(self.table)
        self.macros = MacroEvaluator(self.table)
        self.classifier = Classifier(self.table, self.layouts, self.macros)

    def analyze(self, workers: int = 1) -> Model:
        """Runs every pass and collects the results; never raises for bad input."""
        self.freeze()
        layouts = self.layouts.compute_all(workers)
        constants = self.macros.evaluate_all(workers)
        self.classifier.classify_all()

        reports: list[EntityReport] = []
        diagnostics: list[Diagnostic] = []
        for entity in self.table.entities():
            declaration = entity.declaration
            for conflict in entity.conflicts:
                diagnostics.append(Diagnostic(entity.id, conflict.kind, conflict.message))

            layout = layouts.get(declaration.name) if isinstance(declaration, Record) else None
            if isinstance(layout, LayoutError):
                diagnostics.append(Diagnostic(entity.id, layout.kind, layout.message))
                layout = None

            constant = constants.get(declaration.name) if isinstance(declaration, Macro) else None
            if isinstance(constant, MacroError):
                self._log_macro_error(declaration.name, constant)
                diagnostics.append(Diagnostic(entity.id, constant.kind, constant.message))
                constant = None

            classification = self.classifier.classify(entity.id)
            if classification.support != Support.SUPPORTED and not isinstance(declaration, Macro):
                logger.warning("skipping %s: %s", declaration.name, classification)

            reports.append(EntityReport(
                id=entity.id,
                declaration=declaration,
                type=self._entity_type(entity, constant),
                classification=classification,
                layout=layout,
                constant=constant,
                conflicts=tuple(entity.conflicts),
            ))

        logger.info("Analyzed %d entities with %d diagnostics", len(reports), len(diagnostics))
        return Model(target=self.target, entities=reports, diagnostics=diagnostics)

    @staticmethod
    def _log_macro_error(name: str, error: MacroError):
        # most non-constant macros are ordinary preprocessor use, not a problem
        if error.kind == MacroErrorKind.NOT_CONSTANT:
            logger.debug("skipping %s: %s", name, error)
        else:
            logger.warning("skipping %s: %s", name, error)

    def _entity_type(self, entity: Entity, constant) -> Optional[Type]:
        declaration = entity.declaration
        if isinstance(declaration, Record):
            return RecordRef(name=declaration.name, kind=declaration.kind)
        elif isinstance(declaration, Enum):
            return EnumRef(name=declaration.name)
        elif isinstance(declaration, Typedef):
            return self.table.canonical(declaration.aliased_type)
        elif isinstance(declaration, Function):
            return self.table.canonical(declaration.signature)
        elif isinstance(declaration, Variable):
            return self.table.canonical(declaration.type)
        elif isinstance(declaration, Macro):
            return constant.type if constant is not None else None
        raise TypeError(f"Unhandled declaration {declaration}")
