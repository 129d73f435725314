"""Project-type detection for verification contracts."""

import shutil
from dataclasses import dataclass, field
from pathlib import Path

from .contract import VerificationCommand, VerificationContract

PROJECT_DESCRIPTIONS = {
	"go": "Go project (go test ./..., go build ./...)",
	"node": "Node.js/TypeScript project (npm test, npm run build)",
	"rust": "Rust project (cargo test, cargo build)",
	"python": "Python project (pytest, ruff)",
	"unknown": "Unknown project type",
}

_PYTHON_MARKERS = ("pyproject.toml", "setup.py", "requirements.txt")


@dataclass
class ProjectContext:
	"""Commands and conventions of the project in a repository."""
	type: str = "unknown"
	test_command: list[str] = field(default_factory=list)
	build_command: list[str] = field(default_factory=list)
	lint_command: list[str] = field(default_factory=list)
	test_patterns: list[str] = field(default_factory=list)
	test_directories: list[str] = field(default_factory=list)


def detect_project_type(repo_path: str | Path) -> str:
	"""go.mod, package.json, Cargo.toml, then the Python markers; first match wins."""
	root = Path(repo_path)
	if (root / "go.mod").is_file():
		return "go"
	if (root / "package.json").is_file():
		return "node"
	if (root / "Cargo.toml").is_file():
		return "rust"
	if any((root / m).is_file() for m in _PYTHON_MARKERS):
		return "python"
	return "unknown"


def get_project_context(repo_path: str | Path) -> str:
	"""One-line project description for generator prompts."""
	return PROJECT_DESCRIPTIONS[detect_project_type(repo_path)]


def _python_context(root: Path) -> ProjectContext:
	ctx = ProjectContext(
		type="python",
		build_command=["python", "-m", "compileall", "-q", "."],
		test_patterns=["test_*.py", "*_test.py"],
		test_directories=["tests", "test"],
	)
	if (root / "tests").is_dir() or (root / "pytest.ini").is_file():
		ctx.test_command = ["pytest"]
	else:
		ctx.test_command = ["python", "-m", "unittest", "discover"]

	if shutil.which("ruff") or (root / ".ruff.toml").is_file() or (root / "ruff.toml").is_file():
		ctx.lint_command = ["ruff", "check", "."]
	elif shutil.which("pylint"):
		ctx.lint_command = ["pylint", "."]
	return ctx


def _node_context(root: Path) -> ProjectContext:
	try:
		pkg = (root / "package.json").read_text()
	except OSError:
		pkg = ""

	ctx = ProjectContext(
		type="node",
		test_patterns=["*.test.ts", "*.test.js", "*.spec.ts", "*.spec.js"],
		test_directories=["test", "tests", "__tests__"],
	)
	if '"test"' in pkg:
		ctx.test_command = ["npm", "test"]
	elif "jest" in pkg:
		ctx.test_command = ["npx", "jest"]
	elif "vitest" in pkg:
		ctx.test_command = ["npx", "vitest", "run"]
	elif "mocha" in pkg:
		ctx.test_command = ["npx", "mocha"]

	if '"build"' in pkg:
		ctx.build_command = ["npm", "run", "build"]
	elif (root / "tsconfig.json").is_file():
		ctx.build_command = ["npx", "tsc", "--noEmit"]

	if "eslint" in pkg:
		ctx.lint_command = ["npx", "eslint", "."]
	return ctx


def detect_project_context(repo_path: str | Path) -> ProjectContext:
	root = Path(repo_path)
	project = detect_project_type(root)
	if project == "go":
		return ProjectContext(
			type="go",
			test_command=["go", "test", "./..."],
			build_command=["go", "build", "./..."],
			lint_command=["go", "vet", "./..."],
			test_patterns=["*_test.go"],
		)
	if project == "rust":
		return ProjectContext(
			type="rust",
			test_command=["cargo", "test"],
			build_command=["cargo", "build"],
			lint_command=["cargo", "clippy"],
			test_patterns=["*_test.rs", "tests/*.rs"],
			test_directories=["tests"],
		)
	if project == "python":
		return _python_context(root)
	if project == "node":
		return _node_context(root)
	return ProjectContext()


def enhance_contract(contract: VerificationContract, ctx: ProjectContext) -> None:
	"""Add the project's test, build and (optional) lint commands when not already present."""
	for argv, description, required in (
		(ctx.test_command, "Project tests pass", True),
		(ctx.build_command, "Project builds/compiles successfully", True),
		(ctx.lint_command, "Linting passes", False),
	):
		if not argv:
			continue
		cmd = " ".join(argv)
		if contract.has_command(cmd):
			continue
		contract.commands.append(VerificationCommand(
			command=cmd,
			expect="exit 0",
			description=description,
			required=required,
		))
