"""FlowRouter tests — process selection and the completion guardrail.

Covers:
    - welcome routing when nothing is completed
    - manifest order as the only tie-break, ask_if gating
    - fallback and terminal routing
    - non-routable keys in process_order
    - missing_required / is_process_complete per requirement mode
"""

import pytest

from intake_rulesets.models import Manifest, ProcessDef, RouterSettings
from intake_rulesets.router import FlowRouter, flow_slug, is_routable

BASE = ["01_welcome_user", "02_intent_segment_and_coverages"]


# =====================================================================
# Routing over the v1 manifest
# =====================================================================


class TestRouting:
    """router.next on the real manifest."""

    def test_empty_completed_routes_to_welcome(self, router):
        decision = router.next([], {})
        assert decision.target_flow_slug == "flow_01_welcome_user"
        assert decision.target_process_key == "01_welcome_user"
        assert decision.reason == "welcome"
        assert not decision.flow_complete

    def test_segment_follows_welcome(self, router):
        decision = router.next(["01_welcome_user"], {})
        assert decision.target_process_key == "02_intent_segment_and_coverages"

    def test_no_coverages_jumps_to_history(self, router):
        decision = router.next(BASE, {})
        assert decision.target_flow_slug == "flow_21_history_and_disclosures"

    def test_contents_selected(self, router):
        decision = router.next(BASE, {"ch1_contents_selected": True})
        assert decision.target_flow_slug == "flow_07_property_contents"

    def test_building_walks_premises_processes_in_order(self, router):
        flags = {"ch2_building_selected": True}
        completed = list(BASE)
        seen = []
        for _ in range(4):
            decision = router.next(completed, flags)
            seen.append(decision.target_process_key)
            completed.append(decision.target_process_key)
        assert seen == [
            "03_premises_building_characteristics",
            "04_premises_environment_and_water",
            "05_premises_security_fire_and_burglary",
            "06_premises_licenses_and_liens",
        ]
        assert router.next(completed, flags).target_process_key == "09_property_building_coverage"

    def test_flags_as_persisted_strings(self, router):
        """Flags round-tripped through storage as "כן" still route."""
        decision = router.next(BASE, {"ch1_contents_selected": "כן"})
        assert decision.target_process_key == "07_property_contents"

    def test_compound_ask_if(self, router):
        flags = {"ch4_burglary_selected": True, "has_physical_premises": False}
        assert router.next(BASE, flags).target_process_key == "21_history_and_disclosures"
        flags["has_physical_premises"] = True
        assert router.next(BASE, flags).target_process_key == "11_burglary_and_robbery"

    def test_duplicate_completed_keys_ignored(self, router):
        decision = router.next(["01_welcome_user", "01_welcome_user"], {})
        assert decision.target_process_key == "02_intent_segment_and_coverages"

    def test_everything_completed(self, router):
        decision = router.next(list(router.order), {"ch2_building_selected": True})
        assert decision.flow_complete
        assert decision.target_flow_slug == "done"
        assert decision.target_process_key is None
        assert decision.reason == "complete"

    def test_as_tool_data(self, router):
        data = router.next([], {}).as_tool_data()
        assert data == {
            "router_next_slug": "flow_01_welcome_user",
            "flow_complete": False,
            "router_process_key": "01_welcome_user",
            "targetFlowSlug": "flow_01_welcome_user",
        }
        done = router.next(list(router.order), {}).as_tool_data()
        assert done == {"router_next_slug": "done", "flow_complete": True}


# =====================================================================
# Fallback and routable keys
# =====================================================================


class TestFallback:
    """Fallback routing on a small hand-built manifest."""

    @pytest.fixture
    def small_router(self, evaluator):
        manifest = Manifest(
            router=RouterSettings(welcome_process="01_start", fallback_process="21_history"),
            process_order=["01_start", "05_money", "99_scratch"],
            processes=[
                ProcessDef(process_key="01_start"),
                ProcessDef(process_key="05_money", ask_if="ch5_money_selected = true"),
                ProcessDef(process_key="21_history"),
                ProcessDef(process_key="99_scratch"),
            ],
        )
        return FlowRouter(manifest, evaluator=evaluator)

    def test_order_excludes_non_routable(self, small_router):
        assert small_router.order == ("01_start", "05_money")

    def test_fallback_when_nothing_applies(self, small_router):
        decision = small_router.next(["01_start"], {})
        assert decision.target_process_key == "21_history"
        assert decision.reason == "fallback"

    def test_terminal_after_fallback(self, small_router):
        decision = small_router.next(["01_start", "21_history"], {})
        assert decision.flow_complete
        assert decision.target_flow_slug == "done"

    def test_missing_variable_skips_process(self, small_router):
        assert small_router.next(["01_start"], {"ch5_money_selected": True}).target_process_key == "05_money"

    def test_welcome_defaults_to_first_routable(self, evaluator):
        manifest = Manifest(
            process_order=["02_b", "03_c"],
            processes=[ProcessDef(process_key="02_b"), ProcessDef(process_key="03_c")],
        )
        assert FlowRouter(manifest, evaluator=evaluator).next([], {}).target_process_key == "02_b"

    def test_completion_needs_questionnaire(self, small_router):
        with pytest.raises(RuntimeError):
            small_router.missing_required("01_start", {})

    def test_slug_helpers(self):
        assert flow_slug("07_property_contents") == "flow_07_property_contents"
        assert is_routable("23_internal_agent_section")
        assert not is_routable("24_extra")
        assert not is_routable("intro")


# =====================================================================
# Completion guardrail
# =====================================================================


class TestCompletion:
    """missing_required / is_process_complete."""

    def test_welcome_missing_all_required(self, router):
        assert router.missing_required("01_welcome_user", {}) == [
            "w_contact_name",
            "w_business_name",
            "w_registration_id",
            "w_policy_start_date",
        ]

    def test_welcome_complete(self, router):
        flags = {
            "contact_full_name": "דנה לוי",
            "business_name": "מאפיית כהן",
            "business_registration_id": "514000000",
            "policy_start_date": "2026-03-01",
        }
        assert router.is_process_complete("01_welcome_user", flags)

    def test_ask_if_false_questions_do_not_block(self, router):
        assert router.missing_required("02_intent_segment_and_coverages", {}) == [
            "s_activity",
            "s_has_premises",
            "s_cov_bi_daily",
            "s_cov_third_party",
            "s_cov_employers",
        ]

    def test_conditional_requires_both_conditions(self, router):
        flags = {"ch8_employers_selected": True, "employees_count": 3, "has_employees": False}
        assert router.is_process_complete("16_employers_liability", flags)
        flags["has_employees"] = True
        assert router.missing_required("16_employers_liability", flags) == ["emp_payroll"]

    def test_false_is_an_answer(self, router):
        flags = {"claims_last_3_years": False, "insurance_refused": False}
        assert router.is_process_complete("21_history_and_disclosures", flags)

    def test_attachments_do_not_block(self, router):
        assert router.is_process_complete(
            "22_customer_declarations_and_signatures", {"declaration_accepted": True}
        )

    def test_not_applicable_process_is_complete(self, router):
        assert router.is_process_complete("03_premises_building_characteristics", {})

    def test_agent_process_is_complete(self, router):
        assert router.is_process_complete("23_internal_agent_section", {})

    def test_process_without_file_is_complete(self, router):
        assert router.is_process_complete("08_property_inventory_stock", {"ch1_stock_selected": True})

    def test_unknown_process_raises(self, router):
        with pytest.raises(KeyError):
            router.is_process_complete("42_unknown", {})

    def test_mark_complete(self):
        assert FlowRouter.mark_complete(["01_welcome_user"], "02_x") == ("01_welcome_user", "02_x")
        assert FlowRouter.mark_complete(["01_welcome_user"], "01_welcome_user") == ("01_welcome_user",)
