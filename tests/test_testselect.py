"""Tests for focused test selection."""

import pytest

from alphie.ralph.testselect import (
	FocusedTestSelector,
	build_test_run_pattern,
	is_test_file,
	path_contains_prefix,
)


def _write(root, files: dict[str, str]):
	for rel, content in files.items():
		path = root / rel
		path.parent.mkdir(parents=True, exist_ok=True)
		path.write_text(content)


class TestHelpers:

	@pytest.mark.parametrize("path,expected", [
		("pkg/server_test.go", True),
		("tests/test_api.py", True),
		("api_test.py", True),
		("server.go", False),
		("testing.py", False),
	])
	def test_is_test_file(self, path, expected):
		assert is_test_file(path) == expected

	def test_path_contains_prefix(self):
		assert path_contains_prefix("internal/auth/login.go", "auth")
		assert path_contains_prefix("internal/auth/login.go", "internal/auth")
		assert not path_contains_prefix("internal/authz/login.go", "auth")

	def test_build_pattern(self):
		assert build_test_run_pattern([]) == ""
		assert build_test_run_pattern(["@api"]) == "Test.*@api"
		assert build_test_run_pattern(["@api", "@db"]) == "Test.*(@api|@db)"


class TestColocation:

	def test_go_and_python(self, tmp_path):
		selector = FocusedTestSelector(tmp_path)
		assert selector.get_colocated("pkg/server.go") == "pkg/server_test.go"
		assert selector.get_colocated("app/models.py") == "app/test_models.py"
		assert selector.get_colocated("app/test_models.py") == "app/test_models.py"
		assert selector.get_colocated("README.md") == ""


class TestSelectTests:
	"""Selection and expansion."""

	def test_colocated_only_when_enough(self, tmp_path):
		_write(tmp_path, {
			"pkg/a.go": "", "pkg/a_test.go": "",
			"pkg/b_test.go": "",
		})
		selector = FocusedTestSelector(tmp_path, min_tests=1)
		assert selector.select_tests(["pkg/a.go"]) == ["pkg/a_test.go"]

	def test_expands_to_directory(self, tmp_path):
		_write(tmp_path, {
			"pkg/a.go": "", "pkg/a_test.go": "",
			"pkg/b_test.go": "", "pkg/c_test.go": "",
			"other/d_test.go": "",
		})
		selector = FocusedTestSelector(tmp_path)
		assert selector.select_tests(["pkg/a.go"]) == ["pkg/a_test.go", "pkg/b_test.go", "pkg/c_test.go"]

	def test_python_root_tests_dir(self, tmp_path):
		_write(tmp_path, {"src/app/billing.py": "", "tests/test_billing.py": ""})
		selector = FocusedTestSelector(tmp_path, min_tests=1)
		assert selector.select_tests(["src/app/billing.py"]) == ["tests/test_billing.py"]

	def test_missing_tests_yield_nothing(self, tmp_path):
		_write(tmp_path, {"pkg/a.go": ""})
		assert FocusedTestSelector(tmp_path).select_tests(["pkg/a.go"]) == []

	def test_tags(self, tmp_path):
		selector = FocusedTestSelector(tmp_path)
		result = selector.select_tests_with_tags(["internal/api/users.go", "internal/db/conn.go"])
		assert result.test_tags == ["@api", "@db"]

	def test_custom_tag_mapping(self, tmp_path):
		selector = FocusedTestSelector(tmp_path, tag_mapping={})
		selector.add_tag_mapping("billing", ["@billing", "@payments"])
		assert selector.get_tags_for_path("svc/billing/invoice.go") == ["@billing", "@payments"]
		assert selector.get_tags_for_path("svc/auth/login.go") == []


class TestCallerTests:
	"""Tests of code that calls the changed file."""

	def test_python_callers(self, tmp_path):
		_write(tmp_path, {
			"app/pricing.py": "def total(items):\n\treturn sum(items)\n\ndef _helper():\n\tpass\n",
			"app/cart.py": "from app.pricing import total\n\ndef checkout(items):\n\treturn total(items)\n",
			"app/test_cart.py": "",
			"app/unrelated.py": "def noop():\n\treturn None\n",
			"app/test_unrelated.py": "",
		})
		selector = FocusedTestSelector(tmp_path)
		assert selector.get_caller_tests("app/pricing.py") == ["app/test_cart.py"]

	def test_go_callers(self, tmp_path):
		_write(tmp_path, {
			"pkg/util/strings.go": "package util\n\nfunc Normalize(s string) string {\n\treturn s\n}\n",
			"pkg/api/handler.go": "package api\n\nfunc Handle() {\n\tutil.Normalize(\"x\")\n}\n",
			"pkg/api/handler_test.go": "",
		})
		selector = FocusedTestSelector(tmp_path)
		assert selector.get_caller_tests("pkg/util/strings.go") == ["pkg/api/handler_test.go"]

	def test_test_files_and_unknown_types(self, tmp_path):
		selector = FocusedTestSelector(tmp_path)
		assert selector.get_caller_tests("pkg/a_test.go") == []
		assert selector.get_caller_tests("README.md") == []
