"""Built-in insurance tool tests.

Covers:
    - insurance.router.next / insurance.markProcessComplete
    - insurance.questionnaire.init / insurance.questionnaire.answer
    - insurance.resolveSegment
    - insurance.companyLookup against a mocked data.gov.il endpoint: fills
      only missing keys, suggests the rest, scores the name and raises
      registry red flags
"""

import json

import httpx
import pytest

from conftest import REFERENCE_NOW
from intake_rulesets.config import EngineSettings
from intake_rulesets.tools import VALIDATION_FAILED, ToolContext, ToolExecutor, ToolRegistry
from intake_rulesets.tools.builtin import (
    TOOL_COMPANY_LOOKUP,
    TOOL_MARK_COMPLETE,
    TOOL_QUESTIONNAIRE_ANSWER,
    TOOL_QUESTIONNAIRE_INIT,
    TOOL_RESOLVE_SEGMENT,
    TOOL_ROUTER_NEXT,
    TOOL_SAVE_INTAKE,
    BuiltinDeps,
    register_builtin_tools,
)
from intake_rulesets.tools.builtin.company import (
    CompanyRegistryClient,
    assess_record,
    map_record,
    name_match_confidence,
    normalize_company_number,
    parse_violator,
)
from intake_rulesets.tools.builtin.intake import INTAKE_STORAGE_UNAVAILABLE
from intake_rulesets.tools.builtin.questionnaire import (
    ANSWER_KEY,
    COMPLETE_KEY,
    CURRENT_Q_KEY,
    FORM_JSON_KEY,
    NO_CURRENT_QUESTION,
    QUESTION_ID_KEY,
    UNKNOWN_QUESTION,
)
from intake_rulesets.tools.builtin.routing import (
    NO_PROCESS_KEY,
    PROCESS_INCOMPLETE,
    UNKNOWN_PROCESS,
    completed_from_payload,
)

CTX = ToolContext(conversation_id="conv-7")
REGISTRY_URL = "https://registry.test/api/3/action/datastore_search"

WELCOME_ANSWERS = {
    "contact_full_name": "דנה לוי",
    "business_name": "מאפיית כהן",
    "business_registration_id": "514000000",
    "policy_start_date": "2026-03-01",
}

COMPANY_RECORD = {
    "מספר חברה": 514000000,
    "שם חברה": 'כהן מאפיות בע"מ',
    "שם באנגלית": "COHEN BAKERIES LTD",
    "סטטוס חברה": "פעילה",
    "שם עיר": "חיפה",
    "שם רחוב": "הנמל",
    "מספר בית": 12,
    "מיקוד": None,
    "שנה אחרונה של דוח שנתי (שהוגש)": 2025,
}


def registry_transport(records=None, *, status=200, body=None, calls=None):
    """MockTransport answering datastore_search requests."""

    def handler(request: httpx.Request) -> httpx.Response:
        if calls is not None:
            calls.append(request)
        if body is not None:
            return httpx.Response(status, json=body)
        return httpx.Response(
            status, json={"success": True, "result": {"records": records or []}}
        )

    return httpx.MockTransport(handler)


def make_executor(engine, router, transport=None):
    settings = EngineSettings(company_registry_url=REGISTRY_URL, company_registry_resource_id="res-1")
    registry = ToolRegistry()
    register_builtin_tools(
        registry,
        BuiltinDeps(
            engine=engine,
            router=router,
            settings=settings,
            http_transport=transport,
            clock=lambda: REFERENCE_NOW,
        ),
    )
    return ToolExecutor(registry)


@pytest.fixture
def executor(engine, router):
    return make_executor(engine, router)


# =====================================================================
# Routing tools
# =====================================================================


class TestRouterNext:
    """insurance.router.next"""

    @pytest.mark.asyncio
    async def test_welcome(self, executor):
        result = await executor.execute(TOOL_ROUTER_NEXT, {}, CTX)
        assert result.success
        assert result.data["router_next_slug"] == "flow_01_welcome_user"
        assert result.data["reason"] == "welcome"
        assert result.save_results == {
            "router_next_slug": "flow_01_welcome_user",
            "router_process_key": "01_welcome_user",
            "flow_complete": False,
        }

    @pytest.mark.asyncio
    async def test_derived_vars_visible_to_routing(self, executor):
        """Stock cover implies contents, so the contents process applies."""
        payload = {
            "completed_processes": "01_welcome_user, 02_intent_segment_and_coverages",
            "ch1_stock_selected": True,
        }
        result = await executor.execute(TOOL_ROUTER_NEXT, payload, CTX)
        assert result.data["router_process_key"] == "07_property_contents"

    def test_completed_from_payload(self):
        assert completed_from_payload({"completed_processes": "a, b,,c"}) == ["a", "b", "c"]
        assert completed_from_payload({"completed_processes": ["a", " b "]}) == ["a", "b"]
        assert completed_from_payload({"completed_processes": 5}) == []
        assert completed_from_payload({}) == []


class TestMarkComplete:
    """insurance.markProcessComplete"""

    @pytest.mark.asyncio
    async def test_incomplete_lists_missing(self, executor):
        payload = {"process_key": "01_welcome_user", "business_name": "מאפיית כהן"}
        result = await executor.execute(TOOL_MARK_COMPLETE, payload, CTX)
        assert not result.success
        assert result.error_code == PROCESS_INCOMPLETE
        assert result.data["missing"] == ["w_contact_name", "w_registration_id", "w_policy_start_date"]

    @pytest.mark.asyncio
    async def test_complete_advances(self, executor):
        payload = {"process_key": "01_welcome_user", **WELCOME_ANSWERS}
        result = await executor.execute(TOOL_MARK_COMPLETE, payload, CTX)
        assert result.success
        assert result.save_results["completed_processes"] == ["01_welcome_user"]
        assert result.save_results["router_process_key"] == "02_intent_segment_and_coverages"
        assert result.data["router_next_slug"] == "flow_02_intent_segment_and_coverages"

    @pytest.mark.asyncio
    async def test_default_is_not_an_answer(self, executor):
        payload = {
            "process_key": "02_intent_segment_and_coverages",
            "business_activity_and_products": "ייעוץ",
            "ch3a_selected": False,
            "ch7_third_party_selected": False,
            "ch8_employers_selected": False,
        }
        result = await executor.execute(TOOL_MARK_COMPLETE, payload, CTX)
        assert result.error_code == PROCESS_INCOMPLETE
        assert result.data["missing"] == ["s_has_premises"]

    @pytest.mark.asyncio
    async def test_process_key_from_flow_slug(self, executor):
        payload = {
            "current_flow_slug": "flow_21_history_and_disclosures",
            "completed_processes": ["01_welcome_user", "02_intent_segment_and_coverages"],
            "claims_last_3_years": False,
            "insurance_refused": False,
        }
        result = await executor.execute(TOOL_MARK_COMPLETE, payload, CTX)
        assert result.success
        assert result.data["completed_processes"] == [
            "01_welcome_user",
            "02_intent_segment_and_coverages",
            "21_history_and_disclosures",
        ]
        assert result.save_results["router_process_key"] == "22_customer_declarations_and_signatures"

    @pytest.mark.asyncio
    async def test_missing_and_unknown_process(self, executor):
        missing = await executor.execute(TOOL_MARK_COMPLETE, {}, CTX)
        assert missing.error_code == NO_PROCESS_KEY
        unknown = await executor.execute(TOOL_MARK_COMPLETE, {"process_key": "42_x"}, CTX)
        assert unknown.error_code == UNKNOWN_PROCESS


# =====================================================================
# Questionnaire tools
# =====================================================================


class TestQuestionnaireInit:
    """insurance.questionnaire.init"""

    @pytest.mark.asyncio
    async def test_first_question_with_intro(self, executor):
        result = await executor.execute(TOOL_QUESTIONNAIRE_INIT, {}, CTX)
        assert result.success
        assert result.data["question"]["q_id"] == "w_contact_name"
        assert result.data["done"] is False
        assert result.data["prompt"].startswith("נעים מאוד!")
        assert result.data["prompt"].endswith("איך קוראים לך?")
        assert result.save_results[CURRENT_Q_KEY] == "w_contact_name"
        assert result.save_results[COMPLETE_KEY] is False
        assert result.save_results[FORM_JSON_KEY] == {}

    @pytest.mark.asyncio
    async def test_scoped_to_router_process(self, executor):
        payload = {**WELCOME_ANSWERS, "router_process_key": "01_welcome_user"}
        result = await executor.execute(TOOL_QUESTIONNAIRE_INIT, payload, CTX)
        assert result.data["done"] is True
        assert result.data["question"] is None
        assert result.save_results[COMPLETE_KEY] is True

    @pytest.mark.asyncio
    async def test_seeded_answers_fill_form_json(self, executor):
        result = await executor.execute(TOOL_QUESTIONNAIRE_INIT, {"business_name": "מאפיית כהן"}, CTX)
        assert result.save_results[FORM_JSON_KEY]["insured"]["business_name"] == "מאפיית כהן"
        assert "business_name" not in result.save_results


class TestQuestionnaireAnswer:
    """insurance.questionnaire.answer"""

    @pytest.mark.asyncio
    async def test_accepted_answer(self, executor):
        payload = {CURRENT_Q_KEY: "w_contact_name", ANSWER_KEY: "דנה לוי"}
        result = await executor.execute(TOOL_QUESTIONNAIRE_ANSWER, payload, CTX)
        assert result.success
        assert result.data["accepted"] is True
        assert result.data["value"] == "דנה לוי"
        assert result.data["question"]["q_id"] == "w_business_name"
        assert result.data["summary"] is None
        assert result.save_results["contact_full_name"] == "דנה לוי"
        assert result.save_results[CURRENT_Q_KEY] == "w_business_name"
        assert result.save_results[FORM_JSON_KEY] == {"contact": {"full_name": "דנה לוי"}}
        assert ANSWER_KEY not in result.save_results

    @pytest.mark.asyncio
    async def test_rejected_answer_reprompts(self, executor):
        payload = {QUESTION_ID_KEY: "w_policy_start_date", ANSWER_KEY: "אתמול"}
        result = await executor.execute(TOOL_QUESTIONNAIRE_ANSWER, payload, CTX)
        assert result.success
        assert result.data["accepted"] is False
        assert result.data["reason"] == "invalid_date"
        assert result.data["prompt"].startswith("אפשר לבחור תאריך בין 11/02/2026 ל-28/03/2026?")
        assert result.save_results == {CURRENT_Q_KEY: "w_policy_start_date"}

    @pytest.mark.asyncio
    async def test_stage_end_summary(self, executor):
        payload = {
            "contact_full_name": "דנה לוי",
            "business_name": "מאפיית כהן",
            "business_registration_id": "514000000",
            "router_process_key": "01_welcome_user",
            CURRENT_Q_KEY: "w_policy_start_date",
            ANSWER_KEY: "1.3.26",
        }
        result = await executor.execute(TOOL_QUESTIONNAIRE_ANSWER, payload, CTX)
        assert result.data["done"] is True
        assert "תאריך תחילת ביטוח: 2026-03-01" in result.data["summary"]
        assert result.save_results["policy_end_date"] == "2027-02-28"
        assert result.save_results[FORM_JSON_KEY]["policy"]["end_date"] == "2027-02-28"

    @pytest.mark.asyncio
    async def test_handoff_signals_saved(self, executor):
        payload = {
            "claims_last_3_years": False,
            "router_process_key": "21_history_and_disclosures",
            CURRENT_Q_KEY: "h_refused",
            ANSWER_KEY: "כן, לפני שנתיים",
        }
        result = await executor.execute(TOOL_QUESTIONNAIRE_ANSWER, payload, CTX)
        assert result.data["done"] is True
        assert result.save_results["handoff_required"] is True
        assert result.save_results["handoff_reasons"] == ["prior_refusal"]
        assert "סירוב או ביטול ביטוח בעבר" in result.data["prompt"]

    @pytest.mark.asyncio
    async def test_production_rule_violation(self, executor):
        payload = {
            "ch1_contents_selected": True,
            CURRENT_Q_KEY: "c_contents_sum",
            ANSWER_KEY: "15,500",
        }
        result = await executor.execute(TOOL_QUESTIONNAIRE_ANSWER, payload, CTX)
        assert not result.success
        assert result.error_code == VALIDATION_FAILED
        assert result.data["accepted"] is False
        assert result.error in result.data["prompt"]

    @pytest.mark.asyncio
    async def test_no_or_unknown_question(self, executor):
        none = await executor.execute(TOOL_QUESTIONNAIRE_ANSWER, {ANSWER_KEY: "כן"}, CTX)
        assert none.error_code == NO_CURRENT_QUESTION
        unknown = await executor.execute(
            TOOL_QUESTIONNAIRE_ANSWER, {CURRENT_Q_KEY: "zz", ANSWER_KEY: "כן"}, CTX
        )
        assert unknown.error_code == UNKNOWN_QUESTION


# =====================================================================
# Segment and storage tools
# =====================================================================


class TestResolveSegment:
    @pytest.mark.asyncio
    async def test_fills_only_missing(self, executor):
        payload = {
            "segment_name_he": 'משרד עו"ד',
            "business_activity_and_products": "ייצוג בבתי משפט",
        }
        result = await executor.execute(TOOL_RESOLVE_SEGMENT, payload, CTX)
        assert result.data == {
            "matched": True,
            "filled": [
                "business_site_type",
                "business_used_for",
                "has_physical_premises",
                "professional_liability_selected",
            ],
        }
        assert "business_activity_and_products" not in result.save_results
        assert result.save_results["business_site_type"] == ["משרד"]

    @pytest.mark.asyncio
    async def test_no_match(self, executor):
        result = await executor.execute(TOOL_RESOLVE_SEGMENT, {"segment_name_he": "מאפייה"}, CTX)
        assert result.data == {"matched": False, "filled": []}
        assert result.save_results == {}


class TestSaveIntakeUnconfigured:
    @pytest.mark.asyncio
    async def test_without_storage(self, executor):
        result = await executor.execute(TOOL_SAVE_INTAKE, WELCOME_ANSWERS, CTX)
        assert result.error_code == INTAKE_STORAGE_UNAVAILABLE


# =====================================================================
# Company lookup
# =====================================================================


class TestCompanyLookup:
    """insurance.companyLookup with httpx.MockTransport."""

    @pytest.mark.asyncio
    async def test_found(self, engine, router):
        calls = []
        executor = make_executor(engine, router, registry_transport([COMPANY_RECORD], calls=calls))
        result = await executor.execute(TOOL_COMPANY_LOOKUP, {"company_number": "51-400000-0"}, CTX)

        assert result.success
        assert result.data["found"] is True
        assert result.data["red_flag_reasons"] == []
        assert result.save_results == {
            "business_name": 'כהן מאפיות בע"מ',
            "business_name_en": "COHEN BAKERIES LTD",
            "business_registry_status": "פעילה",
            "business_city": "חיפה",
            "business_street": "הנמל",
            "business_house_number": "12",
            "business_registry_is_active": True,
            "business_registry_last_annual_report_year": 2025,
            "business_registry_reports_recent_ok": True,
            "business_registry_red_flags": False,
            "business_registry_red_flag_reasons": [],
            "business_registration_id": "514000000",
            "business_registry_lookup": "found",
        }

        (request,) = calls
        assert str(request.url).startswith(REGISTRY_URL)
        assert request.url.params["resource_id"] == "res-1"
        assert request.url.params["limit"] == "1"
        assert json.loads(request.url.params["filters"]) == {"מספר חברה": 514000000}

    @pytest.mark.asyncio
    async def test_keeps_customer_answers(self, engine, router):
        """Registry values never replace what the customer already answered."""
        executor = make_executor(engine, router, registry_transport([COMPANY_RECORD]))
        payload = {
            "company_number": "514000000",
            "business_name": "מאפיית כהן",
            "business_city": "חיפה",
        }
        result = await executor.execute(TOOL_COMPANY_LOOKUP, payload, CTX)

        saved = result.save_results
        assert "business_name" not in saved
        assert saved["business_registry_suggested_name"] == 'כהן מאפיות בע"מ'
        # Same value as the customer's: neither refilled nor suggested
        assert "business_city" not in saved
        assert "business_registry_suggested_city" not in saved
        assert saved["business_street"] == "הנמל"
        assert result.data["filled"] == [
            "business_house_number",
            "business_name_en",
            "business_registry_status",
            "business_street",
        ]

    @pytest.mark.asyncio
    async def test_customer_name_survives_merge(self, engine, router):
        state = engine.build_initial_state()
        state = engine.parse_and_apply_answer(state, "w_business_name", "מאפיית כהן").state

        executor = make_executor(engine, router, registry_transport([COMPANY_RECORD]))
        payload = {**state.vars, "company_number": "514000000"}
        result = await executor.execute(TOOL_COMPANY_LOOKUP, payload, CTX)
        state = engine.merge_external(state, result.save_results)

        assert state.vars["business_name"] == "מאפיית כהן"
        assert state.form_json["insured"]["business_name"] == "מאפיית כהן"
        assert state.vars["business_registry_suggested_name"] == 'כהן מאפיות בע"מ'

    @pytest.mark.asyncio
    async def test_name_mismatch_flag(self, engine, router):
        executor = make_executor(engine, router, registry_transport([COMPANY_RECORD]))
        payload = {"company_number": "514000000", "business_name": "מאפיית כהן"}
        result = await executor.execute(TOOL_COMPANY_LOOKUP, payload, CTX)

        saved = result.save_results
        assert saved["business_registry_name_match_confidence"] == 0.33
        assert saved["business_registry_name_match_ok"] is False
        assert saved["business_registry_red_flag_reasons"] == ["name_mismatch"]
        assert saved["business_registry_red_flags"] is True

    @pytest.mark.asyncio
    async def test_matching_name_raises_no_flag(self, engine, router):
        executor = make_executor(engine, router, registry_transport([COMPANY_RECORD]))
        payload = {"company_number": "514000000", "business_name": "כהן מאפיות"}
        result = await executor.execute(TOOL_COMPANY_LOOKUP, payload, CTX)
        assert result.save_results["business_registry_name_match_confidence"] == 1.0
        assert result.save_results["business_registry_red_flags"] is False

    @pytest.mark.asyncio
    async def test_violator(self, engine, router):
        record = {**COMPANY_RECORD, "מפרה": "מפרה", "קוד חברה מפרה": 18}
        executor = make_executor(engine, router, registry_transport([record]))
        result = await executor.execute(TOOL_COMPANY_LOOKUP, {"company_number": "514000000"}, CTX)

        assert result.save_results["business_registry_is_violator"] is True
        assert result.save_results["business_registry_red_flag_reasons"] == ["company_is_violator"]

    @pytest.mark.asyncio
    async def test_inactive_company(self, engine, router):
        record = {**COMPANY_RECORD, "סטטוס חברה": "מחוקה"}
        executor = make_executor(engine, router, registry_transport([record]))
        result = await executor.execute(TOOL_COMPANY_LOOKUP, {"company_number": "514000000"}, CTX)

        assert result.save_results["business_registry_is_active"] is False
        assert result.save_results["business_registry_red_flag_reasons"] == [
            "company_not_active",
            "company_status_not_active",
        ]

    @pytest.mark.asyncio
    async def test_stale_annual_report(self, engine, router):
        record = {**COMPANY_RECORD, "שנה אחרונה של דוח שנתי (שהוגש)": 2015}
        executor = make_executor(engine, router, registry_transport([record]))
        result = await executor.execute(TOOL_COMPANY_LOOKUP, {"company_number": "514000000"}, CTX)

        assert result.save_results["business_registry_reports_recent_ok"] is False
        assert result.save_results["business_registry_red_flag_reasons"] == ["annual_report_not_recent"]

    def test_public_company_exempt_from_report_check(self):
        record = {k: v for k, v in COMPANY_RECORD.items() if k != "שנה אחרונה של דוח שנתי (שהוגש)"}
        signals = assess_record(
            record, company_number="520000000", declared_name=None, entity_type=None, current_year=2026
        )
        assert signals["business_registry_reports_recent_not_applicable"] is True
        assert signals["business_registry_reports_recent_ok"] is True
        assert signals["business_registry_red_flags"] is False

    def test_missing_report_year_flagged(self):
        record = {k: v for k, v in COMPANY_RECORD.items() if k != "שנה אחרונה של דוח שנתי (שהוגש)"}
        signals = assess_record(
            record, company_number="514000000", declared_name=None, entity_type=None, current_year=2026
        )
        assert signals["business_registry_red_flag_reasons"] == ["annual_report_year_missing"]

    @pytest.mark.parametrize(
        "declared, registered, expected",
        [
            ("כהן מאפיות", 'כהן מאפיות בע"מ', 1.0),
            ("Cohen Bakeries", "COHEN BAKERIES HAIFA LTD", 0.9),
            ("מאפיית כהן", 'כהן מאפיות בע"מ', 1 / 3),
            ("", "COHEN BAKERIES LTD", 0.0),
        ],
    )
    def test_name_match_confidence(self, declared, registered, expected):
        assert name_match_confidence(declared, registered) == pytest.approx(expected)

    @pytest.mark.parametrize(
        "label, code, expected",
        [("מפרה", None, True), ("לא מפרה", 18, False), (None, 3, True), (None, "0", False), (None, None, None)],
    )
    def test_parse_violator(self, label, code, expected):
        assert parse_violator(label, code) is expected

    @pytest.mark.asyncio
    async def test_falls_back_to_registration_id(self, engine, router):
        calls = []
        executor = make_executor(engine, router, registry_transport([COMPANY_RECORD], calls=calls))
        result = await executor.execute(
            TOOL_COMPANY_LOOKUP, {"business_registration_id": "514000000"}, CTX
        )
        assert result.data["found"] is True
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_invalid_number_skips_request(self, engine, router):
        calls = []
        executor = make_executor(engine, router, registry_transport(calls=calls))
        result = await executor.execute(TOOL_COMPANY_LOOKUP, {"company_number": "12-3"}, CTX)
        assert result.success
        assert result.data == {"found": False, "reason": "invalid_company_number", "company_number": "123"}
        assert result.save_results == {"business_registry_lookup": "invalid_company_number"}
        assert calls == []

    @pytest.mark.asyncio
    async def test_not_found(self, engine, router):
        executor = make_executor(engine, router, registry_transport([]))
        result = await executor.execute(TOOL_COMPANY_LOOKUP, {"company_number": "514000001"}, CTX)
        assert result.data["reason"] == "not_found"

    @pytest.mark.asyncio
    async def test_http_error_status(self, engine, router):
        transport = registry_transport(status=503, body={"success": False})
        executor = make_executor(engine, router, transport)
        result = await executor.execute(TOOL_COMPANY_LOOKUP, {"company_number": "514000000"}, CTX)
        assert result.success
        assert result.data["reason"] == "http_error"

    @pytest.mark.asyncio
    async def test_connection_error(self, engine, router):
        def handler(request):
            raise httpx.ConnectError("registry unreachable", request=request)

        executor = make_executor(engine, router, httpx.MockTransport(handler))
        result = await executor.execute(TOOL_COMPANY_LOOKUP, {"company_number": "514000000"}, CTX)
        assert result.data["reason"] == "http_error"

    @pytest.mark.asyncio
    async def test_unreadable_body(self, engine, router):
        transport = httpx.MockTransport(lambda request: httpx.Response(200, text="<html>"))
        executor = make_executor(engine, router, transport)
        result = await executor.execute(TOOL_COMPANY_LOOKUP, {"company_number": "514000000"}, CTX)
        assert result.data["reason"] == "parse_error"

    @pytest.mark.asyncio
    async def test_client_requires_context_manager(self):
        client = CompanyRegistryClient(REGISTRY_URL, "res-1")
        with pytest.raises(RuntimeError):
            await client.lookup("514000000")

    def test_helpers(self):
        assert normalize_company_number(" 51-400000-0 ") == "514000000"
        assert normalize_company_number(None) == ""
        assert map_record({"שם עיר": "  ", "מספר בית": 12.0, "ת.ד.": 345}) == {
            "business_house_number": "12",
            "business_po_box": "345",
        }
