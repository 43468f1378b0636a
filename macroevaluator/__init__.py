from macroevaluator.model import MacroErrorKind, MacroError, ConstantKind, ConstantValue
from macroevaluator.expression import ExpressionEvaluator
from macroevaluator.evaluator import MacroEvaluator, referenced_identifiers
