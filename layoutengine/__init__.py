from layoutengine.model import LayoutErrorKind, LayoutError, FieldLayout, Layout
from layoutengine.records import RecordLayoutComputer, StructLayoutComputer, MsStructLayoutComputer, \
    UnionLayoutComputer
from layoutengine.engine import LayoutEngine
