"""
Static validation and formatting of generated source.

Both operations are pure functions of the source text:
- validate_code: syntax checks (ast for Python, json, bracket balance
  for the C-like languages)
- format_code: whitespace normalization; format(format(x)) == format(x)
"""

import ast
import io
import json
import re
import tokenize
from dataclasses import dataclass, field

PLACEHOLDER_RE = re.compile(r"(#|//)\s*(TODO|FIXME|your code here)|^\s*\.\.\.\s*$", re.IGNORECASE | re.MULTILINE)

BRACKET_LANGUAGES = {"javascript", "typescript", "java", "c", "cpp", "csharp", "go", "rust", "css"}


@dataclass
class ValidationReport:
	"""Result of a static check."""
	valid: bool
	language: str
	errors: list[str] = field(default_factory=list)
	warnings: list[str] = field(default_factory=list)

	def __str__(self) -> str:
		if self.valid:
			return f"Syntax OK ({self.language})"
		return "Syntax errors:\n" + "\n".join(self.errors)


def _check_python(code: str) -> list[str]:
	try:
		ast.parse(code)
	except SyntaxError as e:
		return [f"{e.lineno or 0}:{e.offset or 0}: {e.msg}"]
	except ValueError as e:
		# e.g. null bytes in source
		return [str(e)]
	return []


def _check_json(code: str) -> list[str]:
	try:
		json.loads(code)
	except json.JSONDecodeError as e:
		return [f"{e.lineno}:{e.colno}: {e.msg}"]
	return []


_PAIRS = {")": "(", "]": "[", "}": "{"}


def _check_brackets(code: str) -> list[str]:
	"""Bracket balance, skipping string literals and comments."""
	stack: list[tuple[str, int]] = []
	line = 1
	i = 0
	n = len(code)
	while i < n:
		ch = code[i]
		if ch == "\n":
			line += 1
		elif code.startswith("//", i):
			end = code.find("\n", i)
			i = n if end == -1 else end
			continue
		elif code.startswith("/*", i):
			end = code.find("*/", i + 2)
			if end == -1:
				return [f"{line}: unterminated block comment"]
			line += code.count("\n", i, end)
			i = end + 2
			continue
		elif ch in "\"'`":
			quote = ch
			i += 1
			while i < n and code[i] != quote:
				if code[i] == "\\":
					i += 1
				elif code[i] == "\n":
					# A lone quote in JSX text; resume scanning on the next line
					if quote != "`":
						break
					line += 1
				i += 1
			if i >= n and quote == "`":
				return [f"{line}: unterminated template literal"]
			if i < n and code[i] == "\n":
				continue
		elif ch in "([{":
			stack.append((ch, line))
		elif ch in ")]}":
			if not stack or stack[-1][0] != _PAIRS[ch]:
				return [f"{line}: unexpected '{ch}'"]
			stack.pop()
		i += 1

	if stack:
		opener, opened_at = stack[-1]
		return [f"{opened_at}: unclosed '{opener}'"]
	return []


def validate_code(code: str, language: str) -> ValidationReport:
	"""
	Check source for syntax errors.

	Languages without a checker pass with a warning.
	"""
	language = (language or "").lower()
	if not code or not code.strip():
		return ValidationReport(valid=False, language=language, errors=["Code is empty"])

	warnings = []
	if PLACEHOLDER_RE.search(code):
		warnings.append("Code contains placeholders")

	if language == "python":
		errors = _check_python(code)
	elif language == "json":
		errors = _check_json(code)
	elif language in BRACKET_LANGUAGES:
		errors = _check_brackets(code)
	else:
		errors = []
		warnings.append(f"No syntax checker available for {language or 'unknown language'}")

	return ValidationReport(valid=not errors, language=language, errors=errors, warnings=warnings)


def _expand_indent(line: str, tab_size: int = 4) -> str:
	stripped = line.lstrip(" \t")
	indent = line[:len(line) - len(stripped)]
	return indent.expandtabs(tab_size) + stripped


def _python_string_rows(text: str) -> tuple[set[int], set[int]]:
	"""
	Rows (0-based) that end inside, or begin inside, a multi-line string.

	Unparseable source yields no rows.
	"""
	spans: list[tuple[int, int]] = []
	fstring_start = getattr(tokenize, "FSTRING_START", None)
	fstring_end = getattr(tokenize, "FSTRING_END", None)
	opened: list[int] = []
	try:
		for tok in tokenize.generate_tokens(io.StringIO(text).readline):
			if tok.type == tokenize.STRING:
				spans.append((tok.start[0], tok.end[0]))
			elif tok.type == fstring_start:
				opened.append(tok.start[0])
			elif tok.type == fstring_end and opened:
				spans.append((opened.pop(), tok.end[0]))
	except (tokenize.TokenError, SyntaxError):
		return set(), set()
	return _rows_from_spans(spans)


def _template_rows(text: str) -> tuple[set[int], set[int]]:
	"""Same as _python_string_rows, for JavaScript template literals."""
	spans: list[tuple[int, int]] = []
	row = 1
	state = None
	template_start = 0
	i = 0
	while i < len(text):
		ch = text[i]
		nxt = text[i + 1] if i + 1 < len(text) else ""
		if ch == "\n":
			row += 1
			if state in ("'", '"', "//"):
				state = None
		elif state is None:
			if ch == "/" and nxt in "/*":
				state = ch + nxt
				i += 1
			elif ch in "'\"":
				state = ch
			elif ch == "`":
				state = "`"
				template_start = row
		elif state == "/*":
			if ch == "*" and nxt == "/":
				state = None
				i += 1
		elif state in ("'", '"', "`"):
			if ch == "\\":
				if nxt == "\n":
					row += 1
				i += 1
			elif ch == state:
				if state == "`":
					spans.append((template_start, row))
				state = None
		i += 1
	if state == "`":
		spans.append((template_start, row))
	return _rows_from_spans(spans)


def _rows_from_spans(spans: list[tuple[int, int]]) -> tuple[set[int], set[int]]:
	ends_inside: set[int] = set()
	starts_inside: set[int] = set()
	for start, end in spans:
		ends_inside.update(range(start - 1, end - 1))
		starts_inside.update(range(start, end))
	return ends_inside, starts_inside


def format_code(code: str, language: str = "") -> str:
	"""
	Normalize whitespace: newlines, trailing spaces, blank-line runs, final newline.

	Python indentation tabs become four spaces. Lines inside multi-line
	strings (and JavaScript template literals) are left as they are.
	Idempotent.
	"""
	if not code:
		return ""
	language = (language or "").lower()
	text = code.replace("\r\n", "\n").replace("\r", "\n")
	if language == "python":
		ends_inside, starts_inside = _python_string_rows(text)
	elif language in ("javascript", "typescript"):
		ends_inside, starts_inside = _template_rows(text)
	else:
		ends_inside, starts_inside = set(), set()

	lines = []
	for row, line in enumerate(text.split("\n")):
		if row not in ends_inside:
			line = line.rstrip()
		if language == "python" and row not in starts_inside:
			line = _expand_indent(line)
		lines.append((line, row in starts_inside))

	out: list[str] = []
	blank_run = 0
	for line, literal in lines:
		if not line and not literal:
			blank_run += 1
			if blank_run > 2 or not out:
				continue
		else:
			blank_run = 0
		out.append(line)

	while out and not out[-1]:
		out.pop()
	return "\n".join(out) + "\n" if out else ""
