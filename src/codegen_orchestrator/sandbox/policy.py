"""
Static policy checks run before any code is launched.

Network and file-system access are denied per session by scanning the
source for the imports and calls that would need them. A few constructs
are refused regardless of session policy.
"""

import re
from dataclasses import dataclass

# =============================================================================
# Patterns
# =============================================================================

NETWORK_PATTERNS: dict[str, list[str]] = {
	"python": [
		r"^\s*(import|from)\s+(socket|ssl|urllib|urllib3|requests|httpx|aiohttp|http\.client|ftplib|smtplib|telnetlib|websockets?)\b",
		r"\bsocket\.socket\s*\(",
	],
	"javascript": [
		r"require\(\s*['\"](node:)?(http|https|net|dgram|tls|dns|axios|node-fetch|ws)['\"]\s*\)",
		r"^\s*import\b.*\bfrom\s+['\"](node:)?(http|https|net|dgram|tls|dns|axios|node-fetch|ws)['\"]",
		r"\bfetch\s*\(",
		r"\bnew\s+WebSocket\s*\(",
	],
	"bash": [
		r"\b(curl|wget|nc|ncat|netcat|ssh|scp|sftp|ftp|telnet|rsync)\b",
		r"/dev/(tcp|udp)/",
	],
}

FILESYSTEM_PATTERNS: dict[str, list[str]] = {
	"python": [
		r"(?<![\w.])open\s*\(",
		r"\bio\.open\s*\(",
		r"\bos\.(remove|unlink|rmdir|removedirs|mkdir|makedirs|rename|renames|replace|chmod|chown|listdir|scandir|walk|symlink|link|truncate)\s*\(",
		r"^\s*(import|from)\s+(shutil|tempfile|glob)\b",
		r"\.(write_text|write_bytes|read_text|read_bytes|unlink|rmdir|mkdir|touch|iterdir|rglob)\s*\(",
	],
	"javascript": [
		r"require\(\s*['\"](node:)?(fs|fs/promises)['\"]\s*\)",
		r"^\s*import\b.*\bfrom\s+['\"](node:)?(fs|fs/promises)['\"]",
	],
	"bash": [
		r"\b(rm|mv|cp|mkdir|rmdir|touch|chmod|chown|ln|dd|truncate|tee)\b",
		r"(?<![\d&>])>{1,2}\s*(?!&|/dev/null\b)[\w./~$-]",
	],
}

ALWAYS_BLOCKED: dict[str, list[str]] = {
	"python": [
		r"^\s*(import|from)\s+ctypes\b",
		r"\bos\.(fork|forkpty|setuid|setgid|kill|killpg)\s*\(",
	],
	"javascript": [
		r"require\(\s*['\"](node:)?(child_process|cluster|worker_threads)['\"]\s*\)",
		r"\bprocess\.kill\s*\(",
	],
	"bash": [
		r":\s*\(\s*\)\s*\{[^}]*:\s*\|\s*:",  # fork bomb
		r"\b(sudo|su|shutdown|reboot|mkfs|kill|killall|pkill)\b",
	],
}


@dataclass
class PolicyViolation:
	"""One forbidden construct found in submitted code."""
	rule: str
	line: int
	snippet: str

	def __str__(self) -> str:
		return f"{self.rule} access denied (line {self.line}: {self.snippet})"


def _compile(table: dict[str, list[str]]) -> dict[str, list[re.Pattern]]:
	return {lang: [re.compile(p, re.MULTILINE) for p in pats] for lang, pats in table.items()}


_NETWORK = _compile(NETWORK_PATTERNS)
_FILESYSTEM = _compile(FILESYSTEM_PATTERNS)
_BLOCKED = _compile(ALWAYS_BLOCKED)


def _scan(code: str, patterns: list[re.Pattern], rule: str) -> list[PolicyViolation]:
	found = []
	for pattern in patterns:
		for match in pattern.finditer(code):
			line_no = code.count("\n", 0, match.start()) + 1
			line = code.splitlines()[line_no - 1] if code else ""
			found.append(PolicyViolation(rule=rule, line=line_no, snippet=line.strip()[:80]))
	return found


def check_policy(
	code: str,
	language: str,
	allow_network_access: bool = False,
	allow_file_system_access: bool = False,
) -> list[PolicyViolation]:
	"""
	Scan code for constructs the session policy forbids.

	Returns:
		Violations ordered by line; empty when the code may run
	"""
	violations = _scan(code, _BLOCKED.get(language, []), "process")
	if not allow_network_access:
		violations += _scan(code, _NETWORK.get(language, []), "network")
	if not allow_file_system_access:
		violations += _scan(code, _FILESYSTEM.get(language, []), "filesystem")
	return sorted(violations, key=lambda v: v.line)
