"""
Keyword-triggered check patterns for common kinds of task.

A task whose intent or file boundaries mention e.g. "auth" gets the
authentication checks appended to its contract.
"""

from dataclasses import dataclass

from .contract import VerificationCommand, VerificationContract

_SOURCE_GLOBS = "--include='*.go' --include='*.ts' --include='*.js' --include='*.py'"


@dataclass(frozen=True)
class CommandPattern:
	command: str
	description: str
	required: bool
	expect: str = "exit 0"


@dataclass(frozen=True)
class VerificationPattern:
	name: str
	triggers: tuple[str, ...]
	description: str
	commands: tuple[CommandPattern, ...] = ()
	must_exist: tuple[str, ...] = ()
	must_not_exist: tuple[str, ...] = ()


def _grep(expr: str) -> str:
	return f"grep -rE '{expr}' {_SOURCE_GLOBS} ."


STANDARD_PATTERNS: tuple[VerificationPattern, ...] = (
	VerificationPattern(
		name="authentication",
		triggers=("auth", "login", "password", "session", "jwt", "token"),
		description="Authentication and security patterns",
		commands=(
			CommandPattern(_grep("bcrypt|argon2|scrypt|pbkdf2"), "Secure password hashing library used", True),
			CommandPattern(_grep("session.*timeout|token.*expir|jwt.*expir"), "Session/token expiry implemented", False),
		),
	),
	VerificationPattern(
		name="database_migration",
		triggers=("migration", "schema", "database", "sql"),
		description="Database migration patterns",
		commands=(
			CommandPattern(
				"test -d migrations || test -d db/migrations || test -d sql/migrations",
				"Migration directory exists",
				True,
			),
		),
	),
	VerificationPattern(
		name="api_endpoint",
		triggers=("api", "endpoint", "route", "handler", "controller"),
		description="API endpoint patterns",
		commands=(
			CommandPattern(_grep("validate|sanitize|escape"), "Input validation present", True),
			CommandPattern(_grep("error.*handle|try.*catch|panic.*recover"), "Error handling implemented", True),
		),
	),
	VerificationPattern(
		name="configuration",
		triggers=("config", "settings", "environment"),
		description="Configuration file patterns",
		commands=(
			CommandPattern(
				"test -f config.yaml || test -f config.json || test -f .env.example || test -f config.toml",
				"Configuration file exists",
				True,
			),
		),
	),
	VerificationPattern(
		name="testing",
		triggers=("test", "spec", "unit test", "integration test"),
		description="Testing patterns",
		commands=(
			CommandPattern("test -d test || test -d tests || test -d __tests__", "Test directory exists", False),
		),
	),
	VerificationPattern(
		name="documentation",
		triggers=("readme", "documentation", "docs"),
		description="Documentation patterns",
		commands=(
			CommandPattern("test -f README.md", "README exists", True),
			CommandPattern(
				"wc -l README.md | awk '{if ($1 > 10) exit 0; else exit 1}'",
				"README has substantial content",
				False,
			),
		),
	),
	VerificationPattern(
		name="error_handling",
		triggers=("error", "exception", "panic", "crash"),
		description="Error handling patterns",
		commands=(
			CommandPattern(_grep("try|catch|except|panic|recover|error"), "Error handling code present", True),
		),
	),
	VerificationPattern(
		name="logging",
		triggers=("log", "logging", "logger", "audit"),
		description="Logging patterns",
		commands=(
			CommandPattern(_grep(r"log\.|logger\.|logging\."), "Logging statements present", False),
		),
	),
	VerificationPattern(
		name="security_headers",
		triggers=("security", "headers", "cors", "csp"),
		description="Security header patterns",
		commands=(
			CommandPattern(
				_grep("X-Frame-Options|Content-Security-Policy|X-Content-Type-Options"),
				"Security headers configured",
				False,
			),
		),
	),
	VerificationPattern(
		name="rate_limiting",
		triggers=("rate limit", "throttle", "rate-limit"),
		description="Rate limiting patterns",
		commands=(
			CommandPattern(_grep("rate.*limit|throttle|limiter"), "Rate limiting implementation present", True),
		),
	),
)


def detect_patterns(intent: str, boundaries: list[str] | None = None) -> list[VerificationPattern]:
	"""Patterns with a trigger appearing in the intent or any boundary path (case-insensitive)."""
	text = " ".join([intent, *(boundaries or [])]).lower()
	return [p for p in STANDARD_PATTERNS if any(t in text for t in p.triggers)]


def apply_patterns(contract: VerificationContract, patterns: list[VerificationPattern]) -> None:
	"""Append the patterns' commands and constraints to contract, skipping ones already there."""
	existing = {c.command for c in contract.commands}
	fc = contract.file_constraints
	for pattern in patterns:
		for cp in pattern.commands:
			if cp.command in existing:
				continue
			contract.commands.append(VerificationCommand(
				command=cp.command,
				expect=cp.expect,
				description=f"{cp.description} (pattern: {pattern.name})",
				required=cp.required,
			))
			existing.add(cp.command)
		for path in pattern.must_exist:
			if path not in fc.must_exist:
				fc.must_exist.append(path)
		for path in pattern.must_not_exist:
			if path not in fc.must_not_exist:
				fc.must_not_exist.append(path)
