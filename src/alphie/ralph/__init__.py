"""Ralph module - Self-critique loop, quality gates, baselines and test selection."""

from .baseline import Baseline, Comparison, GateResults, capture_baseline, compare_to_baseline
from .critique import CritiquePrompt, CritiqueResult, parse_critique_response, parse_score
from .gates import GateOutput, GateResult, QualityGates
from .iteration import IterationController, TierConfig, get_tier_config
from .loop import RalphLoop, RalphLoopError, RalphLoopResult
from .testselect import FocusedTestSelector

__all__ = [
	"RalphLoop",
	"RalphLoopResult",
	"RalphLoopError",
	"QualityGates",
	"GateOutput",
	"GateResult",
	"Baseline",
	"GateResults",
	"Comparison",
	"capture_baseline",
	"compare_to_baseline",
	"CritiquePrompt",
	"CritiqueResult",
	"parse_critique_response",
	"parse_score",
	"IterationController",
	"TierConfig",
	"get_tier_config",
	"FocusedTestSelector",
]
