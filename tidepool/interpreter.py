"""A small interpreter for live-coded pattern statements.

User code is written as Python expressions over the pattern API::

	sound("bd sn bd sn").every(4, lambda p: p.fast(2))
	stack(["hh*8", sound("bd ~ bd ~").lpf(400)])
	set_cps(0.6)

Each statement is parsed with ``ast`` and walked by ``Evaluator``, which
only understands literals, lists and tuples, the names of the pattern API,
public builder method calls, single-expression lambdas, numeric
arithmetic, comparisons, ``and``/``or``/``not`` and conditional
expressions.  Nothing is handed to ``eval`` or ``exec``; anything outside
that set raises ``InterpreterError``.

Before parsing, comments (``//`` and ``#`` outside string literals) are
removed and lines are joined into statements: a line that starts with
``.``, ``)``, ``]`` or ``}`` continues the previous one, and so does any
line while a bracket is still open.  A blank line ends a statement.
"""

import ast
import logging
import math
import operator
import typing


logger = logging.getLogger(__name__)


class TidepoolError (Exception):
	pass


class InterpreterError (TidepoolError):

	"""Raised when a statement uses syntax or names the interpreter does not allow."""

	pass


_CONTINUATION_PREFIXES = (".", ")", "]", "}")
_OPENERS = "([{"
_CLOSERS = ")]}"

_MAX_EXPONENT = 64

_BINARY_OPS: typing.Dict[type, typing.Callable[[typing.Any, typing.Any], typing.Any]] = {
	ast.Add: operator.add,
	ast.Sub: operator.sub,
	ast.Mult: operator.mul,
	ast.Div: operator.truediv,
	ast.Mod: operator.mod,
	ast.Pow: operator.pow,
}

_COMPARE_OPS: typing.Dict[type, typing.Callable[[typing.Any, typing.Any], bool]] = {
	ast.Eq: operator.eq,
	ast.NotEq: operator.ne,
	ast.Lt: operator.lt,
	ast.LtE: operator.le,
	ast.Gt: operator.gt,
	ast.GtE: operator.ge,
}

# camelCase spellings accepted for builder methods.
METHOD_ALIASES: typing.Dict[str, str] = {
	"almostNever": "almost_never",
	"almostAlways": "almost_always",
	"setCPS": "set_cps",
	"setTempo": "set_tempo",
}


def strip_comment (line: str) -> str:

	"""Cut a line at the first ``//`` or ``#`` that is not inside quotes."""

	quote: typing.Optional[str] = None
	i = 0

	while i < len(line):

		char = line[i]

		if quote is not None:
			if char == "\\":
				i += 2
				continue
			if char == quote:
				quote = None

		elif char in ("'", '"'):
			quote = char

		elif char == "#" or line.startswith("//", i):
			return line[:i]

		i += 1

	return line


def bracket_depth (text: str) -> int:

	"""Net count of open brackets, ignoring those inside quotes."""

	depth = 0
	quote: typing.Optional[str] = None

	for char in text:

		if quote is not None:
			if char == quote:
				quote = None
		elif char in ("'", '"'):
			quote = char
		elif char in _OPENERS:
			depth += 1
		elif char in _CLOSERS:
			depth -= 1

	return depth


def split_statements (code: str) -> typing.List[str]:

	"""
	Remove comments and join continuation lines, returning one string per statement.

	Example:
		```python
		split_statements('sound("bd sn")\\n  .fast(2)  // faster\\n\\nsound("hh*4")')
		# → ['sound("bd sn") .fast(2)', 'sound("hh*4")']
		```
	"""

	statements: typing.List[str] = []
	current = ""
	depth = 0

	for raw_line in code.split("\n"):

		line = strip_comment(raw_line).strip()

		if not line:
			if current and depth <= 0:
				statements.append(current)
				current = ""
				depth = 0
			continue

		if current and (line.startswith(_CONTINUATION_PREFIXES) or depth > 0):
			current = f"{current} {line}"

		elif current:
			statements.append(current)
			current = line
			depth = 0

		else:
			current = line

		depth += bracket_depth(line)

	if current:
		statements.append(current)

	return statements


class _Lambda:

	"""A user lambda: calling it evaluates the body with its parameters bound."""

	def __init__ (self, evaluator: "Evaluator", node: ast.Lambda, scope: typing.Dict[str, typing.Any]) -> None:

		self._evaluator = evaluator
		self._node = node
		self._scope = scope
		self._params = [arg.arg for arg in node.args.args]

	def __call__ (self, *args: typing.Any) -> typing.Any:

		if len(args) != len(self._params):
			raise InterpreterError(f"lambda expects {len(self._params)} argument(s), got {len(args)}")

		scope = dict(self._scope)
		scope.update(zip(self._params, args))

		return self._evaluator.evaluate(self._node.body, scope)


class Evaluator:

	"""
	Walks one expression tree, allowing only the pattern API.

	Parameters:
		namespace: Top-level names (``sound``, ``stack``...) mapped to callables.
		method_filter: Returns True for ``(object, name)`` pairs that may be called.
	"""

	def __init__ (
		self,
		namespace: typing.Mapping[str, typing.Any],
		method_filter: typing.Callable[[typing.Any, str], bool]
	) -> None:

		self._namespace = dict(namespace)
		self._method_filter = method_filter

	def run (self, source: str) -> typing.Any:

		"""Parse and evaluate one statement."""

		logger.debug(f"Evaluating statement: {source}")

		try:
			tree = ast.parse(source, mode="eval")

		except SyntaxError as exc:
			raise InterpreterError(f"Syntax error: {exc.msg}") from None

		return self.evaluate(tree.body, {})

	def evaluate (self, node: ast.AST, scope: typing.Dict[str, typing.Any]) -> typing.Any:

		handler = getattr(self, f"_eval_{type(node).__name__}", None)

		if handler is None:
			raise InterpreterError(f"{type(node).__name__} is not allowed")

		return handler(node, scope)

	def _eval_Constant (self, node: ast.Constant, scope: typing.Dict[str, typing.Any]) -> typing.Any:

		if not isinstance(node.value, (str, int, float, bool, type(None))):
			raise InterpreterError(f"Literal of type {type(node.value).__name__} is not allowed")

		return node.value

	def _eval_List (self, node: ast.List, scope: typing.Dict[str, typing.Any]) -> typing.List[typing.Any]:
		return [self.evaluate(element, scope) for element in node.elts]

	def _eval_Tuple (self, node: ast.Tuple, scope: typing.Dict[str, typing.Any]) -> typing.Tuple[typing.Any, ...]:
		return tuple(self.evaluate(element, scope) for element in node.elts)

	def _eval_Name (self, node: ast.Name, scope: typing.Dict[str, typing.Any]) -> typing.Any:

		if node.id in scope:
			return scope[node.id]

		if node.id in self._namespace:
			return self._namespace[node.id]

		raise InterpreterError(f"Unknown name: {node.id}")

	def _eval_Lambda (self, node: ast.Lambda, scope: typing.Dict[str, typing.Any]) -> _Lambda:

		arguments = node.args

		if arguments.vararg or arguments.kwarg or arguments.kwonlyargs or arguments.defaults or arguments.posonlyargs:
			raise InterpreterError("Only simple lambda parameters are allowed")

		return _Lambda(self, node, scope)

	def _eval_Call (self, node: ast.Call, scope: typing.Dict[str, typing.Any]) -> typing.Any:

		function = self._callable(node.func, scope)

		args = []

		for arg in node.args:
			if isinstance(arg, ast.Starred):
				raise InterpreterError("Star arguments are not allowed")
			args.append(self.evaluate(arg, scope))

		kwargs = {}

		for keyword in node.keywords:
			if keyword.arg is None or keyword.arg.startswith("_"):
				raise InterpreterError("Only plain keyword arguments are allowed")
			kwargs[keyword.arg] = self.evaluate(keyword.value, scope)

		return function(*args, **kwargs)

	def _callable (self, node: ast.expr, scope: typing.Dict[str, typing.Any]) -> typing.Callable[..., typing.Any]:

		"""Resolve the function part of a call: a known name or an allowed method."""

		if isinstance(node, ast.Name):

			value = self._eval_Name(node, scope)

			if not callable(value):
				raise InterpreterError(f"{node.id} is not callable")

			return typing.cast(typing.Callable[..., typing.Any], value)

		if isinstance(node, ast.Attribute):

			target = self.evaluate(node.value, scope)
			name = METHOD_ALIASES.get(node.attr, node.attr)

			if name.startswith("_") or not self._method_filter(target, name):
				raise InterpreterError(f"Method {node.attr!r} is not available on {type(target).__name__}")

			return typing.cast(typing.Callable[..., typing.Any], getattr(target, name))

		raise InterpreterError("Only named functions and pattern methods can be called")

	def _eval_BinOp (self, node: ast.BinOp, scope: typing.Dict[str, typing.Any]) -> typing.Any:

		op = _BINARY_OPS.get(type(node.op))

		if op is None:
			raise InterpreterError(f"Operator {type(node.op).__name__} is not allowed")

		left = _number(self.evaluate(node.left, scope))
		right = _number(self.evaluate(node.right, scope))

		if isinstance(node.op, ast.Pow) and abs(right) > _MAX_EXPONENT:
			raise InterpreterError("Exponent too large")

		try:
			return op(left, right)

		except ZeroDivisionError:
			raise InterpreterError("Division by zero") from None

	def _eval_UnaryOp (self, node: ast.UnaryOp, scope: typing.Dict[str, typing.Any]) -> typing.Any:

		operand = self.evaluate(node.operand, scope)

		if isinstance(node.op, ast.Not):
			return not operand

		if isinstance(node.op, ast.USub):
			return -_number(operand)

		if isinstance(node.op, ast.UAdd):
			return +_number(operand)

		raise InterpreterError(f"Operator {type(node.op).__name__} is not allowed")

	def _eval_BoolOp (self, node: ast.BoolOp, scope: typing.Dict[str, typing.Any]) -> typing.Any:

		result: typing.Any = None

		for value_node in node.values:

			result = self.evaluate(value_node, scope)

			if isinstance(node.op, ast.And) and not result:
				return result

			if isinstance(node.op, ast.Or) and result:
				return result

		return result

	def _eval_Compare (self, node: ast.Compare, scope: typing.Dict[str, typing.Any]) -> bool:

		left = self.evaluate(node.left, scope)

		for op_node, comparator in zip(node.ops, node.comparators):

			op = _COMPARE_OPS.get(type(op_node))

			if op is None:
				raise InterpreterError(f"Comparison {type(op_node).__name__} is not allowed")

			right = self.evaluate(comparator, scope)

			if not op(left, right):
				return False

			left = right

		return True

	def _eval_IfExp (self, node: ast.IfExp, scope: typing.Dict[str, typing.Any]) -> typing.Any:

		if self.evaluate(node.test, scope):
			return self.evaluate(node.body, scope)

		return self.evaluate(node.orelse, scope)


def _number (value: typing.Any) -> typing.Union[int, float]:

	if isinstance(value, bool) or not isinstance(value, (int, float)):
		raise InterpreterError(f"Arithmetic needs numbers, got {type(value).__name__}")

	if isinstance(value, float) and not math.isfinite(value):
		raise InterpreterError("Arithmetic needs finite numbers")

	return value
