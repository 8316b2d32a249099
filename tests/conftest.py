from datetime import datetime
from zoneinfo import ZoneInfo

import pytest

from intake_rulesets.answers import AnswerParser
from intake_rulesets.evaluator import ConditionEvaluator
from intake_rulesets.prompt import PromptManager
from intake_rulesets.questionnaire import QuestionnaireEngine
from intake_rulesets.router import FlowRouter
from intake_rulesets.ruleset import RulesetStore

# Wednesday 2026-02-11, 10:00 in Israel
REFERENCE_NOW = datetime(2026, 2, 11, 10, 0, tzinfo=ZoneInfo("Asia/Jerusalem"))


@pytest.fixture(scope="session")
def store():
    """Load the v1 ruleset once for the entire test session."""
    s = RulesetStore()
    s.load()
    return s


@pytest.fixture
def evaluator():
    return ConditionEvaluator()


@pytest.fixture
def parser():
    """AnswerParser pinned to the reference date."""
    return AnswerParser(clock=lambda: REFERENCE_NOW)


@pytest.fixture
def engine(store, evaluator, parser):
    return QuestionnaireEngine(
        store.questionnaire, evaluator=evaluator, parser=parser, prompts=PromptManager()
    )


@pytest.fixture
def router(store, evaluator):
    return FlowRouter(store.manifest, evaluator=evaluator, questionnaire=store.questionnaire)
