"""QuestionnaireEngine tests against the v1 ruleset.

Covers:
    - initial state: contract defaults, seeded answers, computed vars
    - next-question selection (stage order, ask_if / required_if, defaults
      still asked, agent and file questions skipped, module gating)
    - answer commit: vars + form_json, immutability, failure leaves state
    - derived rules (plain value, ``$condition``, ``maps_to_q_id``)
    - policy end date, property sum, production validations
    - pending attachments, handoff triggers, stage summaries, progress
"""

import pytest

from intake_rulesets.models import (
    ModuleDef,
    Question,
    Questionnaire,
    Stage,
)
from intake_rulesets.questionnaire import QuestionnaireEngine, format_value_he

WELCOME = "01_welcome_user"
SEGMENT = "02_intent_segment_and_coverages"
CONTENTS = "07_property_contents"


def _answer_all(engine, state, answers):
    """Apply ``(q_id, raw)`` pairs, failing the test on any rejection."""
    for q_id, raw in answers:
        outcome = engine.parse_and_apply_answer(state, q_id, raw)
        assert outcome.ok, (q_id, raw, outcome.reason)
        state = outcome.state
    return state


# =====================================================================
# Initial state
# =====================================================================


class TestInitialState:
    """build_initial_state — defaults, seeds and computed vars."""

    def test_contract_defaults_are_tracked(self, engine):
        state = engine.build_initial_state()
        assert state.vars["has_physical_premises"] is True
        assert state.vars["ch2_building_selected"] is False
        assert "has_physical_premises" in state.defaulted_keys
        assert state.enabled_modules == set()

    def test_condition_rule_runs_on_initial_state(self, engine):
        """``$condition`` rules store their guard result even when false."""
        state = engine.build_initial_state()
        assert state.vars["ch3_bi_selected"] is False

    def test_computed_vars_start_at_zero(self, engine):
        state = engine.build_initial_state()
        assert state.vars["property_sum"] == 0
        assert state.vars["bi_sum"] == 0

    def test_seed_vars_win_over_defaults(self, engine):
        state = engine.build_initial_state({"ch2_building_selected": True})
        assert state.vars["ch2_building_selected"] is True
        assert "ch2_building_selected" not in state.defaulted_keys
        assert "ch2_building" in state.enabled_modules

    def test_seeded_answer_counts_as_answered(self, engine):
        state = engine.build_initial_state({"business_name": "מאפיית כהן"})
        assert "w_business_name" in state.answered_question_ids
        assert state.form_json["insured"]["business_name"] == "מאפיית כהן"

    def test_extra_defaults(self, engine):
        state = engine.build_initial_state(defaults={"channel": "whatsapp"})
        assert state.vars["channel"] == "whatsapp"
        assert "channel" in state.defaulted_keys


# =====================================================================
# Next question
# =====================================================================


class TestNextQuestion:
    """get_next_question — ordering and skipping rules."""

    def test_first_question(self, engine):
        nq = engine.get_next_question(engine.build_initial_state())
        assert nq.q_id == "w_contact_name"
        assert nq.stage_key == WELCOME
        assert nq.stage_title_he == "פתיחה ופרטי המבוטח"
        assert nq.json_path == "contact.full_name"

    def test_prompt_renders_answered_vars(self, engine):
        state = _answer_all(
            engine,
            engine.build_initial_state(),
            [("w_contact_name", "דנה לוי"), ("w_business_name", "מאפיית כהן")],
        )
        nq = engine.get_next_question(state)
        assert nq.q_id == "w_registration_id"
        assert nq.prompt_he == 'מה מספר הח"פ / העוסק של מאפיית כהן?'

    def test_agent_question_skipped(self, engine):
        state = _answer_all(
            engine,
            engine.build_initial_state(),
            [
                ("w_contact_name", "דנה לוי"),
                ("w_business_name", "מאפיית כהן"),
                ("w_registration_id", "514000000"),
                ("w_policy_start_date", "תחילת החודש הבא"),
            ],
        )
        assert engine.get_next_question(state, [WELCOME]) is None
        assert engine.get_next_question(state).stage_key == SEGMENT

    def test_defaulted_field_still_asked(self, engine):
        """has_physical_premises has a default but its question is asked."""
        state = _answer_all(engine, engine.build_initial_state(), [("s_activity", "חנות בגדים")])
        nq = engine.get_next_question(state, [SEGMENT])
        assert nq.q_id == "s_has_premises"

    def test_ask_if_false_skips_question(self, engine):
        state = _answer_all(
            engine,
            engine.build_initial_state(),
            [("s_activity", "ייעוץ"), ("s_has_premises", "לא")],
        )
        nq = engine.get_next_question(state, [SEGMENT])
        assert nq.q_id == "s_cov_bi_daily"

    def test_enum_options_exposed(self, engine):
        state = _answer_all(
            engine,
            engine.build_initial_state(),
            [("s_activity", "חנות"), ("s_has_premises", "כן")],
        )
        nq = engine.get_next_question(state, [SEGMENT])
        assert nq.q_id == "s_site_type"
        assert nq.options == ["משרד", "חנות", "מחסן", "מפעל", "קליניקה"]

    def test_stage_ask_if_gates_process(self, engine):
        state = engine.build_initial_state()
        assert engine.get_next_question(state, [CONTENTS]) is None
        state = _answer_all(engine, state, [("s_cov_contents", "כן")])
        assert engine.get_next_question(state, [CONTENTS]).q_id == "c_contents_sum"

    def test_stage_without_file_is_empty(self, engine):
        state = engine.build_initial_state({"ch1_stock_selected": True})
        assert engine.get_next_question(state, ["08_property_inventory_stock"]) is None

    def test_unknown_stage_scope(self, engine):
        assert engine.get_next_question(engine.build_initial_state(), ["99_nowhere"]) is None


class TestModuleGating:
    """Only modules declared in the catalog gate questions."""

    @pytest.fixture
    def gated_engine(self, evaluator, parser):
        questionnaire = Questionnaire(
            modules_catalog=[ModuleDef(module_key="ch5_money", enable_if="ch5_money_selected = true")],
            stages=[Stage(stage_key="12_money_all_risks", question_ids=["m_sum", "m_safe", "m_notes"])],
            questions=[
                Question(q_id="m_sum", stage_key="12_money_all_risks", field_key_en="money_sum",
                         data_type="number", module_key="ch5_money"),
                Question(q_id="m_safe", stage_key="12_money_all_risks", field_key_en="has_safe",
                         data_type="boolean", module_key="not_in_catalog"),
                Question(q_id="m_notes", stage_key="12_money_all_risks", field_key_en="money_notes",
                         data_type="string"),
            ],
        )
        return QuestionnaireEngine(questionnaire, evaluator=evaluator, parser=parser)

    def test_disabled_module_skips_question(self, gated_engine):
        nq = gated_engine.get_next_question(gated_engine.build_initial_state())
        assert nq.q_id == "m_safe"

    def test_enabled_module_asks_question(self, gated_engine):
        state = gated_engine.build_initial_state({"ch5_money_selected": True})
        assert state.enabled_modules == {"ch5_money"}
        assert gated_engine.get_next_question(state).q_id == "m_sum"

    def test_json_path_defaults_to_field_key(self, gated_engine):
        outcome = gated_engine.parse_and_apply_answer(
            gated_engine.build_initial_state(), "m_notes", "כספת בחדר האחורי"
        )
        assert outcome.state.form_json == {"money_notes": "כספת בחדר האחורי"}


# =====================================================================
# Answer commit
# =====================================================================


class TestAnswerCommit:
    """parse_and_apply_answer — commit, failure and immutability."""

    def test_commit_writes_vars_and_form_json(self, engine):
        state = engine.build_initial_state()
        outcome = engine.parse_and_apply_answer(state, "w_business_name", "  מאפיית כהן ")
        assert outcome.ok
        assert outcome.value == "מאפיית כהן"
        assert outcome.state.vars["business_name"] == "מאפיית כהן"
        assert outcome.state.form_json["insured"]["business_name"] == "מאפיית כהן"
        assert "w_business_name" in outcome.state.answered_question_ids

    def test_input_state_not_mutated(self, engine):
        state = engine.build_initial_state()
        before = state.model_copy(deep=True)
        engine.parse_and_apply_answer(state, "w_business_name", "מאפיית כהן")
        assert state == before

    def test_failure_returns_unchanged_state(self, engine):
        state = engine.build_initial_state()
        outcome = engine.parse_and_apply_answer(state, "w_policy_start_date", "בשנה הבאה")
        assert not outcome.ok
        assert outcome.reason == "invalid_date"
        assert outcome.message
        assert outcome.state == state

    def test_question_object_accepted(self, engine):
        q = engine.question("s_cov_contents")
        outcome = engine.parse_and_apply_answer(engine.build_initial_state(), q, "yes")
        assert outcome.state.vars["ch1_contents_selected"] is True

    def test_unknown_question_raises(self, engine):
        with pytest.raises(KeyError):
            engine.parse_and_apply_answer(engine.build_initial_state(), "nope", "כן")

    def test_reapplying_same_answer_is_stable(self, engine):
        state = engine.build_initial_state()
        once = engine.parse_and_apply_answer(state, "s_cov_stock", "כן").state
        twice = engine.parse_and_apply_answer(once, "s_cov_stock", "כן").state
        assert once.vars == twice.vars
        assert once.form_json == twice.form_json

    def test_merge_external(self, engine):
        state = engine.build_initial_state()
        merged = engine.merge_external(
            state, {"business_name": "כהן בע\"מ", "business_city": "חיפה", "ignored": None}
        )
        assert merged.vars["business_city"] == "חיפה"
        assert "ignored" not in merged.vars
        assert merged.form_json["insured"]["business_name"] == 'כהן בע"מ'
        assert "w_business_name" in merged.answered_question_ids
        assert "business_name" not in state.vars


# =====================================================================
# Derived and computed variables
# =====================================================================


class TestDerived:
    """Derived rules and computed vars."""

    def test_stock_implies_contents(self, engine):
        outcome = engine.parse_and_apply_answer(engine.build_initial_state(), "s_cov_stock", "כן")
        assert outcome.derived_updates["ch1_contents_selected"] is True
        assert {"ch1_contents", "ch1_stock"} <= outcome.state.enabled_modules

    def test_condition_value_tracks_guard(self, engine):
        state = _answer_all(engine, engine.build_initial_state(), [("s_cov_bi_daily", "כן")])
        assert state.vars["ch3_bi_selected"] is True
        assert "ch3_business_interruption" in state.enabled_modules
        state = _answer_all(engine, state, [("s_cov_bi_daily", "לא")])
        assert state.vars["ch3_bi_selected"] is False

    def test_apply_derived_rules_returns_updates(self, engine):
        state = engine.build_initial_state()
        state.vars.update(ch1_stock_selected=True, ch3a_selected=True)

        new_state, updates = engine.apply_derived_rules(state)

        assert updates["ch1_contents_selected"] is True
        assert updates["ch3_bi_selected"] is True
        assert "has_employees" not in updates
        assert new_state.vars["ch3_bi_selected"] is True
        assert "ch3_business_interruption" in new_state.enabled_modules
        # The input snapshot is left alone
        assert state.vars["ch3_bi_selected"] is False

    def test_apply_derived_rules_condition_value_written_when_false(self, engine):
        """A ``$condition`` rule always assigns; literal rules only when they hold."""
        state = engine.build_initial_state()
        state.vars["ch3_bi_selected"] = True

        new_state, updates = engine.apply_derived_rules(state)

        assert updates == {"ch3_bi_selected": False}
        assert new_state.vars["ch3_bi_selected"] is False
        assert "ch3_bi_selected" not in new_state.defaulted_keys

    def test_no_premises_clears_burglary(self, engine):
        state = engine.build_initial_state({"ch4_burglary_selected": True})
        state = _answer_all(engine, state, [("s_has_premises", "לא")])
        assert state.vars["ch4_burglary_selected"] is False

    def test_maps_to_question(self, engine):
        """employees_count > 0 answers emp_has_employees in form_json too."""
        state = engine.build_initial_state({"ch8_employers_selected": True})
        state = _answer_all(engine, state, [("emp_count", "12 עובדים")])
        assert state.vars["has_employees"] is True
        assert state.form_json["liability"]["employers"]["has_employees"] is True
        nq = engine.get_next_question(state, ["16_employers_liability"])
        assert nq.q_id == "emp_payroll"

    def test_number_constraint_enforced(self, engine):
        state = engine.build_initial_state({"ch8_employers_selected": True})
        outcome = engine.parse_and_apply_answer(state, "emp_count", "900")
        assert outcome.reason == "out_of_range"

    def test_policy_end_date_derived(self, engine):
        state = _answer_all(
            engine, engine.build_initial_state(), [("w_policy_start_date", "תחילת החודש הבא")]
        )
        assert state.vars["policy_start_date"] == "2026-03-01"
        assert state.vars["policy_end_date"] == "2027-02-28"
        assert state.form_json["policy"] == {"start_date": "2026-03-01", "end_date": "2027-02-28"}

    def test_property_sum(self, engine):
        state = engine.build_initial_state({"ch1_stock_selected": True})
        state = _answer_all(
            engine, state, [("c_contents_sum", "1,500,000"), ("c_stock_sum", "200 אלף")]
        )
        assert state.vars["property_sum"] == 1700000

    def test_bi_sum_from_daily_compensation(self, engine):
        state = engine.build_initial_state({"ch3a_selected": True})
        state = _answer_all(engine, state, [("bi_daily_comp", "500")])
        assert state.vars["bi_sum"] == 50000


# =====================================================================
# Validation, attachments, handoff, summaries
# =====================================================================


class TestChecks:
    """Production validations, attachments and handoff triggers."""

    def test_production_rule_violation(self, engine):
        state = engine.build_initial_state({"ch1_contents_selected": True})
        state = _answer_all(engine, state, [("c_contents_sum", "15,500")])
        assert engine.validate_production_rules(state) == 'נא להזין את סכום התכולה בכפולות של 1,000 ש"ח'

    def test_production_rule_satisfied(self, engine):
        state = engine.build_initial_state({"ch1_contents_selected": True})
        state = _answer_all(engine, state, [("c_contents_sum", "15,000")])
        assert engine.validate_production_rules(state) is None

    def test_pending_attachment_until_uploaded(self, engine):
        state = engine.build_initial_state({"ch1_contents_selected": True})
        state = _answer_all(engine, state, [("c_contents_sum", "1,500,000")])
        pending = engine.compute_pending_attachments(state)
        assert [p.field_key_en for p in pending] == ["contents_invoices_file"]
        assert pending[0].notes

        uploaded = engine.merge_external(state, {"contents_invoices_file": "uploads/invoices.pdf"})
        assert engine.compute_pending_attachments(uploaded) == []
        assert uploaded.form_json["attachments"]["contents_invoices"] == "uploads/invoices.pdf"

    def test_file_question_never_asked(self, engine):
        state = engine.build_initial_state({"ch1_contents_selected": True})
        state = _answer_all(engine, state, [("c_contents_sum", "1,500,000")])
        assert engine.get_next_question(state, [CONTENTS]) is None

    def test_handoff_triggers(self, engine):
        state = engine.build_initial_state({"ch2_building_selected": True})
        assert engine.evaluate_handoff_triggers(state) == []
        state = _answer_all(engine, state, [("b_construction", "עץ"), ("h_refused", "כן")])
        keys = [s.trigger_key for s in engine.evaluate_handoff_triggers(state)]
        assert keys == ["flammable_construction", "prior_refusal"]


class TestSummaryAndProgress:
    """Stage summaries and progress counters."""

    def test_stage_summary(self, engine):
        state = _answer_all(
            engine,
            engine.build_initial_state(),
            [("w_contact_name", "דנה לוי"), ("w_business_name", "מאפיית כהן")],
        )
        assert engine.build_stage_summary(state, WELCOME) == "איך קוראים לך: דנה לוי; מה שם העסק: מאפיית כהן"
        assert engine.build_stage_summary(state, WELCOME, max_items=1) == "איך קוראים לך: דנה לוי; ועוד 1 פרטים"

    def test_empty_summary(self, engine):
        assert engine.build_stage_summary(engine.build_initial_state(), WELCOME) == ""
        assert engine.build_stage_summary(engine.build_initial_state(), "99_nowhere") == ""

    def test_progress(self, engine):
        state = engine.build_initial_state()
        assert state.stage_progress[WELCOME].total == 4
        assert state.stage_progress[WELCOME].answered == 0
        state = _answer_all(engine, state, [("w_contact_name", "דנה לוי")])
        assert state.stage_progress[WELCOME].answered == 1
        assert not state.stage_progress[WELCOME].complete

    def test_format_value_he(self):
        assert format_value_he(True) == "כן"
        assert format_value_he(1500000) == "1,500,000"
        assert format_value_he(["משרד", "מחסן"]) == "משרד, מחסן"
        assert format_value_he(None) == ""


class TestIntakeDocument:
    def test_meta_merged(self, engine):
        state = _answer_all(engine, engine.build_initial_state(), [("w_business_name", "מאפיית כהן")])
        document = engine.build_intake_document(state, {"source": "conversation"})
        assert document["meta"] == {
            "insurer": "clal",
            "form_catalog_number": "15943",
            "form_version_date": "2025-07",
            "source": "conversation",
        }
        assert document["insured"]["business_name"] == "מאפיית כהן"
        assert "meta" not in state.form_json
