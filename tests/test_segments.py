"""Segment inference tests."""

from intake_rulesets.segments import LEGAL_SERVICES_HE, infer_segment_defaults, segment_text


class TestSegmentText:
    def test_joins_present_fields(self):
        text = segment_text({"segment_name_he": "משרד עו\"ד", "business_activity_and_products": "ליטיגציה"})
        assert text == 'משרד עו"ד | ליטיגציה'

    def test_empty(self):
        assert segment_text({}) == ""
        assert infer_segment_defaults({}) is None


class TestInference:
    def test_lawyer_defaults(self):
        result = infer_segment_defaults({"segment_name_he": 'משרד עו"ד'})
        assert result == {
            "has_physical_premises": True,
            "business_site_type": ["משרד"],
            "business_used_for": LEGAL_SERVICES_HE,
            "business_activity_and_products": LEGAL_SERVICES_HE,
            "professional_liability_selected": True,
        }

    def test_lawyer_keeps_given_activity(self):
        result = infer_segment_defaults({"business_activity_and_products": "עורך דין מקרקעין"})
        assert result["business_activity_and_products"] == "עורך דין מקרקעין"

    def test_online_business(self):
        assert infer_segment_defaults({"business_used_for": "חנות אונליין"}) == {
            "has_physical_premises": False
        }

    def test_no_match(self):
        assert infer_segment_defaults({"segment_name_he": "מאפייה"}) is None
