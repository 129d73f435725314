"""Tests for keyword-triggered verification patterns."""

from alphie.verification.contract import VerificationCommand, VerificationContract
from alphie.verification.patterns import STANDARD_PATTERNS, apply_patterns, detect_patterns


def _names(patterns) -> list[str]:
	return [p.name for p in patterns]


class TestDetectPatterns:

	def test_intent_triggers(self):
		assert _names(detect_patterns("Add JWT support")) == ["authentication"]

	def test_case_insensitive(self):
		assert "documentation" in _names(detect_patterns("Update the README"))

	def test_boundary_paths_trigger(self):
		found = _names(detect_patterns("tidy up", ["db/migrations/001.sql"]))
		assert found == ["database_migration"]

	def test_multi_word_trigger(self):
		assert "rate_limiting" in _names(detect_patterns("add a rate limit to uploads"))

	def test_no_match(self):
		assert detect_patterns("rename a variable") == []

	def test_order_follows_standard_patterns(self):
		found = detect_patterns("api error handling")
		order = [p.name for p in STANDARD_PATTERNS]
		assert [order.index(p.name) for p in found] == sorted(order.index(p.name) for p in found)


class TestApplyPatterns:

	def test_appends_commands_with_pattern_suffix(self):
		contract = VerificationContract(intent="docs")
		apply_patterns(contract, detect_patterns("write documentation"))

		assert [c.command for c in contract.commands][0] == "test -f README.md"
		first = contract.commands[0]
		assert first.required is True
		assert first.description == "README exists (pattern: documentation)"
		assert contract.commands[1].required is False

	def test_skips_existing_commands(self):
		contract = VerificationContract(commands=[VerificationCommand(cmd="test -f README.md", required=False)])
		apply_patterns(contract, detect_patterns("readme"))
		readme = [c for c in contract.commands if c.command == "test -f README.md"]
		assert len(readme) == 1
		assert readme[0].required is False

	def test_applying_twice_is_idempotent(self):
		contract = VerificationContract()
		patterns = detect_patterns("login endpoint")
		apply_patterns(contract, patterns)
		count = len(contract.commands)
		apply_patterns(contract, patterns)
		assert len(contract.commands) == count
