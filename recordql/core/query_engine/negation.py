"""
Negation normalization.

Rewrites a predicate so NOT sits only on leaves the store cannot invert
(string matches, membership, collection tests):

    NOT NOT p          ->  p
    NOT (a == b)       ->  a != b      (and the other comparison inversions)
    NOT (a AND b)      ->  NOT a OR NOT b
    NOT (a OR b)       ->  NOT a AND NOT b
    NOT True / False   ->  False / True

The pass is idempotent: a normalized predicate is a fixed point.

Dependencies: recordql.core.query_engine.expressions
System role: Canonicalizes predicates before they reach a query source
"""

from recordql.core.query_engine.expressions import (
    And,
    Compare,
    Constant,
    Expression,
    Not,
    Or,
)


class NegationNormalizer:
    """Pushes NOT inward over comparisons and AND/OR."""

    def normalize(self, expression: Expression) -> Expression:
        if isinstance(expression, Not):
            return self._negate(self.normalize(expression.operand))
        if isinstance(expression, And):
            return And(self.normalize(expression.left), self.normalize(expression.right))
        if isinstance(expression, Or):
            return Or(self.normalize(expression.left), self.normalize(expression.right))
        return expression

    def _negate(self, operand: Expression) -> Expression:
        # operand is already normalized
        if isinstance(operand, Not):
            return operand.operand
        if isinstance(operand, Compare):
            return Compare(operand.op.inverted, operand.left, operand.right)
        if isinstance(operand, And):
            return self.normalize(Or(Not(operand.left), Not(operand.right)))
        if isinstance(operand, Or):
            return self.normalize(And(Not(operand.left), Not(operand.right)))
        if isinstance(operand, Constant) and isinstance(operand.value, bool):
            return Constant(not operand.value)
        return Not(operand)


_normalizer = NegationNormalizer()


def normalize(expression: Expression) -> Expression:
    """Normalize ``expression`` with the shared normalizer."""
    return _normalizer.normalize(expression)
